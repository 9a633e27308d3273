import json

from sqlalchemy.exc import OperationalError

from coinfolio.ledger import Holding
from coinfolio.models import KeyValue
from coinfolio.storage import PORTFOLIO_STORAGE_KEY, PortfolioStore


def holding(coin_id, amount, price, current=None):
    return Holding(
        id=coin_id, symbol=coin_id.upper(), name=coin_id.capitalize(), image="",
        amount=amount, purchase_price=price, purchase_date="2024-03-01T12:00:00Z",
        current_price=current,
    )


def test_load_empty_store(store):
    assert store.load() == []


def test_save_and_load(store):
    store.save([holding("btc", 1.5, 20000, current=30000), holding("eth", 2, 1000)])
    store.save([holding("btc", 2, 21000)])

    items = store.load()
    assert [h.id for h in items] == ["btc"]
    assert items[0].amount == 2
    assert items[0].purchase_price == 21000


def test_stored_record_uses_camel_case_fields(store):
    store.save([holding("btc", 1, 100, current=120), holding("eth", 1, 10)])

    with store.session_factory() as db:
        raw = db.get(KeyValue, PORTFOLIO_STORAGE_KEY).value
    records = json.loads(raw)

    assert records[0] == {
        "id": "btc", "symbol": "BTC", "name": "Btc", "image": "",
        "amount": 1.0, "purchasePrice": 100.0, "purchaseDate": "2024-03-01T12:00:00Z",
        "currentPrice": 120.0,
    }
    assert "currentPrice" not in records[1]


def write_raw(store, raw):
    with store.session_factory() as db:
        db.add(KeyValue(key=PORTFOLIO_STORAGE_KEY, value=raw))
        db.commit()


def test_load_corrupt_blob(store):
    write_raw(store, "{not json")
    assert store.load() == []


def test_load_non_list_blob(store):
    write_raw(store, json.dumps({"id": "btc"}))
    assert store.load() == []


def test_load_skips_bad_records(store):
    write_raw(store, json.dumps([
        {"id": "btc", "symbol": "BTC", "name": "Bitcoin", "image": "",
         "amount": 1, "purchasePrice": 100, "purchaseDate": "2024-01-01"},
        {"id": "eth", "amount": "lots"},
    ]))

    items = store.load()
    assert [h.id for h in items] == ["btc"]


class BrokenSession:
    def __enter__(self):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    def __exit__(self, *exc):
        return False


def test_storage_failures_are_swallowed():
    store = PortfolioStore(BrokenSession)

    assert store.load() == []
    store.save([holding("btc", 1, 100)])

from coinfolio.ledger import HoldingInput, Ledger
from coinfolio.refresh import PriceRefresher

from conftest import FakeMarket


def ledger_with(*coins):
    ledger = Ledger()
    for coin_id, amount, price in coins:
        ledger.acquire(HoldingInput(
            id=coin_id, symbol=coin_id.upper(), name=coin_id, amount=amount,
            purchase_price=price, purchase_date="2024-01-01T00:00:00Z",
        ))
    return ledger


def test_tick_applies_prices_for_held_coins():
    ledger = ledger_with(("bitcoin", 1, 20000), ("ethereum", 2, 1000))
    market = FakeMarket(prices={"bitcoin": 30000, "ethereum": 1500, "tether": 1})
    saved = []

    refresher = PriceRefresher(ledger, market.fetch_prices, on_refreshed=lambda led: saved.append(led.items))

    assert refresher.tick()
    assert market.price_requests == [{"bitcoin", "ethereum"}]
    assert ledger.total_value == 33000
    assert len(saved) == 1


def test_tick_on_empty_ledger_does_not_fetch():
    market = FakeMarket(prices={"bitcoin": 1})
    refresher = PriceRefresher(Ledger(), market.fetch_prices)

    assert not refresher.tick()
    assert market.price_requests == []


def test_failed_fetch_keeps_last_prices():
    ledger = ledger_with(("bitcoin", 1, 20000))
    market = FakeMarket(prices={"bitcoin": 25000})
    refresher = PriceRefresher(ledger, market.fetch_prices)
    refresher.tick()

    market.fail = True
    assert not refresher.tick()
    assert ledger.get("bitcoin").current_price == 25000
    assert ledger.total_value == 25000


def test_empty_price_response_is_not_applied():
    ledger = ledger_with(("bitcoin", 1, 20000))
    saved = []
    refresher = PriceRefresher(ledger, lambda ids: {}, on_refreshed=saved.append)

    assert not refresher.tick()
    assert saved == []


def test_start_runs_first_tick_and_shutdown():
    ledger = ledger_with(("bitcoin", 1, 20000))
    market = FakeMarket(prices={"bitcoin": 25000})
    refresher = PriceRefresher(ledger, market.fetch_prices, interval=3600)

    scheduler = refresher.start()
    try:
        assert refresher.start() is scheduler
        assert scheduler.get_job("refresh_portfolio_prices") is not None
        assert ledger.get("bitcoin").current_price == 25000
    finally:
        refresher.shutdown()
    refresher.shutdown()

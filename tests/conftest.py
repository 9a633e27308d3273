import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from coinfolio.coingecko import Coin, MarketDataError
from coinfolio.main import create_app
from coinfolio.storage import PortfolioStore


class FakeMarket:
    """Stands in for CoinGeckoClient with fixed coins and prices."""

    def __init__(self, coins=None, prices=None):
        self.coins = coins or []
        self.prices = prices or {}
        self.fail = False
        self.price_requests = []

    def fetch_prices(self, ids):
        self.price_requests.append(set(ids))
        if self.fail:
            raise MarketDataError("CoinGecko API error: 503")
        return {i: p for i, p in self.prices.items() if i in ids}

    def get_coins(self, **params):
        if self.fail:
            raise MarketDataError("CoinGecko API error: 503")
        return list(self.coins)

    def get_coin_by_id(self, coin_id):
        return next((c for c in self.coins if c.id == coin_id), None)

    def search_coins(self, query):
        q = query.strip().lower()
        if not q:
            return []
        return [c for c in self.coins if q in c.name.lower() or q in c.symbol.lower()][:20]


def make_coin(coin_id, symbol, price, change=0.0, market_cap=0.0, volume=0.0, name=None):
    return Coin(
        id=coin_id,
        symbol=symbol,
        name=name or coin_id.capitalize(),
        image=f"https://img.example/{coin_id}.png",
        current_price=price,
        market_cap=market_cap,
        total_volume=volume,
        price_change_percentage_24h=change,
    )


@pytest.fixture()
def store(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}")
    store = PortfolioStore(sessionmaker(bind=engine))
    store.create_tables(engine)
    yield store
    engine.dispose()


@pytest.fixture()
def market():
    return FakeMarket(
        coins=[
            make_coin("bitcoin", "BTC", 30000.0, change=2.5, market_cap=6e11, volume=2e10),
            make_coin("ethereum", "ETH", 1500.0, change=-1.2, market_cap=2e11, volume=1e10),
            make_coin("tether", "USDT", 1.0, change=0.0, market_cap=8e10, volume=3e10),
        ],
        prices={"bitcoin": 30000.0, "ethereum": 1500.0, "tether": 1.0},
    )


@pytest.fixture()
def client(store, market):
    app = create_app(store=store, market=market, start_refresher=False)
    with TestClient(app) as c:
        yield c

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from coinfolio.coin_list import CoinListFilters, PriceFilter, SortField, SortOrder, apply_filters, sort_option
from coinfolio.coingecko import CoinGeckoClient, MarketDataError
from coinfolio.ledger import HoldingInput, Ledger
from coinfolio.logging_config import setup_logging
from coinfolio.refresh import PriceRefresher
from coinfolio.storage import PortfolioStore

PRICE_REFRESH_SECONDS = float(os.getenv("PRICE_REFRESH_SECONDS", "60"))

_logger = logging.getLogger(__name__)


class HoldingIn(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(min_length=1)
    symbol: str = Field(min_length=1, max_length=20)
    name: str = Field(min_length=1)
    image: str = ""
    amount: float = Field(gt=0, allow_inf_nan=False)
    purchase_price: float = Field(ge=0, allow_inf_nan=False)
    purchase_date: Optional[str] = None


class AmountIn(BaseModel):
    amount: float = Field(allow_inf_nan=False)


def get_ledger(request: Request) -> Ledger:
    return request.app.state.ledger


def get_store(request: Request) -> PortfolioStore:
    return request.app.state.store


def get_market(request: Request) -> CoinGeckoClient:
    return request.app.state.market


def get_refresher(request: Request) -> PriceRefresher:
    return request.app.state.refresher


def create_app(store: Optional[PortfolioStore] = None, market: Optional[CoinGeckoClient] = None,
               start_refresher: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal store, market
        if store is None:
            from coinfolio.db import SessionLocal, engine

            store = PortfolioStore(SessionLocal)
            store.create_tables(engine)
        if market is None:
            market = CoinGeckoClient()

        ledger = Ledger()
        ledger.hydrate(store.load())
        _logger.info("Loaded portfolio with %d holdings", len(ledger))

        refresher = PriceRefresher(
            ledger,
            market.fetch_prices,
            interval=PRICE_REFRESH_SECONDS,
            on_refreshed=lambda led: led.persist(store),
        )
        app.state.ledger = ledger
        app.state.store = store
        app.state.market = market
        app.state.refresher = refresher

        if start_refresher:
            refresher.start()
        try:
            yield
        finally:
            refresher.shutdown()

    app = FastAPI(title="Coinfolio", lifespan=lifespan)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/portfolio")
    def get_portfolio(ledger: Ledger = Depends(get_ledger)):
        return ledger.snapshot()

    @app.post("/portfolio")
    def add_holding(h: HoldingIn, ledger: Ledger = Depends(get_ledger),
                    store: PortfolioStore = Depends(get_store),
                    refresher: PriceRefresher = Depends(get_refresher)):
        purchase_date = h.purchase_date or datetime.now(timezone.utc).isoformat()
        is_new = h.id not in ledger.ids()
        ledger.acquire(HoldingInput(**h.model_dump(exclude={"purchase_date"}), purchase_date=purchase_date))
        ledger.persist(store)
        # the held id set changed, so price it now instead of at the next tick
        if is_new:
            refresher.tick()
        return ledger.snapshot()

    @app.patch("/portfolio/{coin_id}")
    def update_amount(coin_id: str, body: AmountIn, ledger: Ledger = Depends(get_ledger),
                      store: PortfolioStore = Depends(get_store)):
        if ledger.get(coin_id) is None:
            raise HTTPException(status_code=404, detail=f"{coin_id} is not in the portfolio")
        ledger.set_amount(coin_id, body.amount)
        ledger.persist(store)
        return ledger.snapshot()

    @app.delete("/portfolio/{coin_id}")
    def remove_holding(coin_id: str, ledger: Ledger = Depends(get_ledger),
                       store: PortfolioStore = Depends(get_store)):
        ledger.remove(coin_id)
        ledger.persist(store)
        return ledger.snapshot()

    @app.delete("/portfolio")
    def clear_portfolio(ledger: Ledger = Depends(get_ledger), store: PortfolioStore = Depends(get_store)):
        ledger.clear()
        ledger.persist(store)
        return ledger.snapshot()

    @app.post("/portfolio/refresh")
    def refresh_prices(ledger: Ledger = Depends(get_ledger),
                       refresher: PriceRefresher = Depends(get_refresher)):
        refreshed = refresher.tick()
        return {"refreshed": refreshed, **ledger.snapshot()}

    @app.get("/coins")
    def list_coins(q: str = "", sort_field: SortField = "market_cap", sort_order: SortOrder = "desc",
                   price_filter: PriceFilter = "all", page: int = Query(1, ge=1),
                   market: CoinGeckoClient = Depends(get_market)):
        filters = CoinListFilters(search_query=q, sort_field=sort_field,
                                  sort_order=sort_order, price_filter=price_filter)
        try:
            coins = market.get_coins(order=sort_option(filters), page=page)
        except MarketDataError as e:
            raise HTTPException(status_code=502, detail=f"Market data provider error: {e}")
        return [c.model_dump(by_alias=True) for c in apply_filters(coins, filters)]

    @app.get("/coins/search")
    def search_coins(q: str = "", market: CoinGeckoClient = Depends(get_market)):
        return [c.model_dump(by_alias=True) for c in market.search_coins(q)]

    @app.get("/coins/{coin_id}")
    def get_coin(coin_id: str, market: CoinGeckoClient = Depends(get_market)):
        coin = market.get_coin_by_id(coin_id)
        if coin is None:
            raise HTTPException(status_code=404, detail=f"No market data found for {coin_id}")
        return coin.model_dump(by_alias=True)

    return app


setup_logging(os.getenv("LOG_LEVEL", "INFO"))
app = create_app()

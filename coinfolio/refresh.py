"""
PRICE REFRESHER

Periodically pulls live prices for the held coins and feeds them to the
ledger. Scheduling only; valuation stays in the ledger.
"""

import logging
from typing import Callable, Dict, Iterable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from coinfolio.coingecko import MarketDataError
from coinfolio.ledger import Ledger

_logger = logging.getLogger(__name__)

FetchPrices = Callable[[Iterable[str]], Dict[str, float]]


class PriceRefresher:
    def __init__(self, ledger: Ledger, fetch_prices: FetchPrices, interval: float = 60,
                 on_refreshed: Optional[Callable[[Ledger], None]] = None):
        self.ledger = ledger
        self.fetch_prices = fetch_prices
        self.interval = interval
        self.on_refreshed = on_refreshed
        self._scheduler: Optional[BackgroundScheduler] = None

    def tick(self) -> bool:
        """
        One fetch -> apply cycle. Returns True when new prices reached the
        ledger; a failed fetch leaves the last known prices in place.
        """
        ids = self.ledger.ids()
        if not ids:
            return False

        ticket = self.ledger.begin_refresh()
        try:
            prices = self.fetch_prices(ids)
        except MarketDataError as e:
            _logger.warning("Price refresh failed, keeping last known prices: %s", e)
            return False

        if not prices:
            return False

        applied = self.ledger.refresh_prices(prices, ticket=ticket)
        if applied:
            _logger.info("Refreshed prices for %d holdings", len(prices))
            if self.on_refreshed is not None:
                self.on_refreshed(self.ledger)
        return applied

    def start(self) -> BackgroundScheduler:
        if self._scheduler is not None:
            return self._scheduler

        self.tick()

        scheduler = BackgroundScheduler()
        scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self.interval),
            id="refresh_portfolio_prices",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        _logger.info("Price refresher started (every %ss)", self.interval)
        return scheduler

    def shutdown(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        _logger.info("Price refresher stopped")

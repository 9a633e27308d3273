"""
Portfolio ledger: the holdings collection and its valuation.

All mutations go through the ledger operations below. Each one runs under a
single lock and recomputes the aggregates from scratch before returning, so
callers never observe half-applied state or drifted totals.
"""

import logging
import math
import threading
from typing import Dict, Iterable, List, Mapping, Optional, Set

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

_logger = logging.getLogger(__name__)


class HoldingInput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    symbol: str
    name: str
    image: str = ""
    amount: float
    purchase_price: float
    purchase_date: str


class Holding(HoldingInput):
    current_price: Optional[float] = None

    @property
    def market_price(self) -> float:
        return self.current_price if self.current_price is not None else self.purchase_price

    @property
    def current_value(self) -> float:
        return self.amount * self.market_price

    @property
    def cost(self) -> float:
        return self.amount * self.purchase_price

    @property
    def gain_loss(self) -> float:
        return self.current_value - self.cost

    @property
    def gain_loss_percentage(self) -> float:
        cost = self.cost
        return self.gain_loss / cost * 100 if cost > 0 else 0.0

    def to_record(self) -> dict:
        """Storage/wire form with the camelCase field names; unset price omitted."""
        return self.model_dump(by_alias=True, exclude_none=True)


class Ledger:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._items: List[Holding] = []
        self._refresh_issued = 0
        self._refresh_applied = 0
        self.is_loaded = False
        self.total_value = 0.0
        self.total_cost = 0.0
        self.total_gain_loss = 0.0
        self.total_gain_loss_percentage = 0.0

    # ------------------------------------------------------------------
    # read side
    # ------------------------------------------------------------------

    @property
    def items(self) -> List[Holding]:
        with self._lock:
            return [h.model_copy() for h in self._items]

    def get(self, coin_id: str) -> Optional[Holding]:
        with self._lock:
            holding = self._find(coin_id)
            return holding.model_copy() if holding is not None else None

    def ids(self) -> Set[str]:
        with self._lock:
            return {h.id for h in self._items}

    def __len__(self) -> int:
        return len(self._items)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "items": [
                    {
                        **h.to_record(),
                        "currentValue": h.current_value,
                        "gainLoss": h.gain_loss,
                        "gainLossPercentage": h.gain_loss_percentage,
                    }
                    for h in self._items
                ],
                "totalValue": self.total_value,
                "totalCost": self.total_cost,
                "totalGainLoss": self.total_gain_loss,
                "totalGainLossPercentage": self.total_gain_loss_percentage,
                "totalHoldings": len(self._items),
                "isLoaded": self.is_loaded,
            }

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------

    def acquire(self, holding: HoldingInput) -> None:
        """
        Add a purchase. A second purchase of a held coin is merged: amounts
        add up, the cost basis becomes the amount-weighted average and the
        latest purchase date wins.
        """
        if not (math.isfinite(holding.amount) and math.isfinite(holding.purchase_price)) \
                or holding.amount <= 0 or holding.purchase_price < 0:
            _logger.warning(
                "Ignoring acquisition of %s with amount=%s price=%s",
                holding.id, holding.amount, holding.purchase_price,
            )
            return

        with self._lock:
            existing = self._find(holding.id)
            if existing is None:
                self._items.append(Holding(**holding.model_dump()))
            else:
                total_amount = existing.amount + holding.amount
                total_cost = (
                    existing.amount * existing.purchase_price
                    + holding.amount * holding.purchase_price
                )
                existing.amount = total_amount
                existing.purchase_price = total_cost / total_amount
                existing.purchase_date = holding.purchase_date
                existing.symbol = holding.symbol
                existing.name = holding.name
                existing.image = holding.image
            self._recompute()

    def set_amount(self, coin_id: str, amount: float) -> None:
        with self._lock:
            existing = self._find(coin_id)
            if existing is None or not math.isfinite(amount):
                return
            if amount <= 0:
                self._items = [h for h in self._items if h.id != coin_id]
            else:
                existing.amount = amount
            self._recompute()

    def persist(self, store) -> None:
        """Save the current holdings; the copy and the write happen under the lock."""
        with self._lock:
            store.save(self._items)

    def remove(self, coin_id: str) -> None:
        with self._lock:
            self._items = [h for h in self._items if h.id != coin_id]
            self._recompute()

    def clear(self) -> None:
        with self._lock:
            self._items = []
            self._recompute()

    def begin_refresh(self) -> int:
        """Issue a ticket for a price request about to be sent."""
        with self._lock:
            self._refresh_issued += 1
            return self._refresh_issued

    def refresh_prices(self, prices: Mapping[str, float], ticket: Optional[int] = None) -> bool:
        """
        Apply live prices. Held coins missing from `prices` keep their last
        known price. A response whose ticket is older than one already
        applied is dropped; returns whether the prices were applied.
        """
        with self._lock:
            if ticket is not None:
                if ticket < self._refresh_applied:
                    _logger.debug("Dropping stale price response #%s", ticket)
                    return False
                self._refresh_applied = ticket
            for h in self._items:
                price = prices.get(h.id)
                if price is not None and math.isfinite(price):
                    h.current_price = price
            self._recompute()
            return True

    def hydrate(self, items: Iterable[Holding]) -> None:
        """
        Replace the holdings with previously stored ones. Stored prices are
        not live, so they are dropped and valuation starts at cost.
        """
        hydrated: Dict[str, Holding] = {}
        for item in items:
            if not (math.isfinite(item.amount) and math.isfinite(item.purchase_price)) or item.amount <= 0:
                _logger.warning("Skipping stored holding %s with amount %s", item.id, item.amount)
                continue
            stored = Holding(**item.model_dump(exclude={"current_price"}))
            existing = hydrated.get(stored.id)
            if existing is None:
                hydrated[stored.id] = stored
                continue
            _logger.warning("Merging duplicate stored holding %s", stored.id)
            total_amount = existing.amount + stored.amount
            existing.purchase_price = (
                existing.amount * existing.purchase_price
                + stored.amount * stored.purchase_price
            ) / total_amount
            existing.amount = total_amount
            existing.purchase_date = max(existing.purchase_date, stored.purchase_date)

        with self._lock:
            self._items = list(hydrated.values())
            self.is_loaded = True
            self._recompute()

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _find(self, coin_id: str) -> Optional[Holding]:
        for h in self._items:
            if h.id == coin_id:
                return h
        return None

    def _recompute(self) -> None:
        total_value = sum(h.current_value for h in self._items)
        total_cost = sum(h.cost for h in self._items)
        self.total_value = total_value
        self.total_cost = total_cost
        self.total_gain_loss = total_value - total_cost
        self.total_gain_loss_percentage = (
            self.total_gain_loss / total_cost * 100 if total_cost > 0 else 0.0
        )

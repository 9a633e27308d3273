import logging
import os
import threading
from typing import Dict, Iterable, List, Optional

import requests
from cachetools import TTLCache
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

BASE_URL = os.getenv("COINGECKO_API_URL", "https://api.coingecko.com/api/v3")
MAX_PER_PAGE = 250

_logger = logging.getLogger(__name__)


class MarketDataError(Exception):
    """Market data could not be fetched."""


class Coin(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    symbol: str
    name: str
    image: str = ""
    current_price: Optional[float] = None
    market_cap: Optional[float] = None
    market_cap_rank: Optional[int] = None
    price_change_24h: Optional[float] = None
    price_change_percentage_24h: Optional[float] = None
    total_volume: Optional[float] = None
    high_24h: Optional[float] = None
    low_24h: Optional[float] = None
    last_updated: Optional[str] = None

    @classmethod
    def from_market_data(cls, data: dict) -> "Coin":
        return cls(
            id=data["id"],
            symbol=str(data.get("symbol") or "").upper(),
            name=data.get("name") or data["id"],
            image=data.get("image") or "",
            current_price=data.get("current_price"),
            market_cap=data.get("market_cap"),
            market_cap_rank=data.get("market_cap_rank"),
            price_change_24h=data.get("price_change_24h"),
            price_change_percentage_24h=data.get("price_change_percentage_24h"),
            total_volume=data.get("total_volume"),
            high_24h=data.get("high_24h"),
            low_24h=data.get("low_24h"),
            last_updated=data.get("last_updated"),
        )


class CoinGeckoClient:
    def __init__(self, base_url: str = BASE_URL, session: Optional[requests.Session] = None,
                 timeout: float = 8, cache_ttl: int = 300, price_ttl: int = 30):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        # Cache market pages to reduce rate-limit pain
        self.cache = TTLCache(maxsize=256, ttl=cache_ttl)
        self.price_cache = TTLCache(maxsize=512, ttl=price_ttl)
        # shared by request threads and the refresh scheduler
        self._cache_lock = threading.Lock()

    def _get(self, endpoint: str, params: dict, cache: Optional[TTLCache] = None):
        cache = self.cache if cache is None else cache
        key = (endpoint, tuple(sorted(params.items())))
        with self._cache_lock:
            cached = cache.get(key)
        if cached is not None:
            return cached

        try:
            r = self.session.get(
                f"{self.base_url}{endpoint}",
                params=params,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            r.raise_for_status()
            data = r.json()
        except requests.RequestException as e:
            raise MarketDataError(f"CoinGecko API error: {e}") from e
        except ValueError as e:
            raise MarketDataError(f"CoinGecko returned invalid JSON: {e}") from e

        with self._cache_lock:
            cache[key] = data
        return data

    def get_coins(self, vs_currency: str = "usd", order: str = "market_cap_desc",
                  per_page: int = 100, page: int = 1, sparkline: bool = False,
                  price_change_percentage: str = "24h", ids: Optional[Iterable[str]] = None,
                  cache: Optional[TTLCache] = None) -> List[Coin]:
        params = {
            "vs_currency": vs_currency,
            "order": order,
            "per_page": per_page,
            "page": page,
            "sparkline": str(sparkline).lower(),
            "price_change_percentage": price_change_percentage,
        }
        if ids is not None:
            params["ids"] = ",".join(sorted(ids))
        data = self._get("/coins/markets", params, cache=cache)
        return [Coin.from_market_data(d) for d in data]

    def get_coin_by_id(self, coin_id: str) -> Optional[Coin]:
        try:
            coins = self.get_coins(ids=[coin_id])
        except MarketDataError:
            _logger.exception("Error fetching coin %s", coin_id)
            return None
        return coins[0] if coins else None

    def get_coins_by_ids(self, ids: Iterable[str]) -> List[Coin]:
        ids = sorted(set(ids))
        if not ids:
            return []
        coins = []
        for start in range(0, len(ids), MAX_PER_PAGE):
            batch = ids[start:start + MAX_PER_PAGE]
            coins.extend(self.get_coins(ids=batch, per_page=len(batch), cache=self.price_cache))
        return coins

    def search_coins(self, query: str) -> List[Coin]:
        q = query.strip().lower()
        if not q:
            return []
        try:
            coins = self.get_coins(per_page=MAX_PER_PAGE)
        except MarketDataError:
            _logger.exception("Error searching coins for %r", query)
            return []
        matches = [c for c in coins if q in c.name.lower() or q in c.symbol.lower()]
        return matches[:20]

    def fetch_prices(self, ids: Iterable[str]) -> Dict[str, float]:
        """Current USD price per coin id; coins without a quote are left out."""
        return {c.id: c.current_price for c in self.get_coins_by_ids(ids) if c.current_price is not None}

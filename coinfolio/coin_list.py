from dataclasses import dataclass
from typing import List, Literal

from coinfolio.coingecko import Coin

SortField = Literal["market_cap", "volume", "price", "percent_change_24h"]
SortOrder = Literal["asc", "desc"]
PriceFilter = Literal["all", "gainers", "losers"]

_SORT_KEYS = {
    "market_cap": lambda c: c.market_cap,
    "volume": lambda c: c.total_volume,
    "price": lambda c: c.current_price,
    "percent_change_24h": lambda c: c.price_change_percentage_24h,
}


@dataclass
class CoinListFilters:
    search_query: str = ""
    sort_field: SortField = "market_cap"
    sort_order: SortOrder = "desc"
    price_filter: PriceFilter = "all"


def sort_option(filters: CoinListFilters) -> str:
    return f"{filters.sort_field}_{filters.sort_order}"


def apply_filters(coins: List[Coin], filters: CoinListFilters) -> List[Coin]:
    result = list(coins)

    q = filters.search_query.strip().lower()
    if q:
        result = [c for c in result if q in c.name.lower() or q in c.symbol.lower()]

    if filters.price_filter == "gainers":
        result = [c for c in result if (c.price_change_percentage_24h or 0) > 0]
    elif filters.price_filter == "losers":
        result = [c for c in result if (c.price_change_percentage_24h or 0) < 0]

    key = _SORT_KEYS[filters.sort_field]
    # coins missing the sort value go last in either direction
    present = [c for c in result if key(c) is not None]
    missing = [c for c in result if key(c) is None]
    present.sort(key=key, reverse=filters.sort_order == "desc")
    return present + missing

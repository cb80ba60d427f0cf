"""
oracle.py - Price feeds and the staleness-checked oracle adapter

Classes:
- PriceOracleAdapter: validates freshness and sign of the feed's latest price
- StaticPriceFeed: a single settable (price, updated_at) observation
- TimeSeriesPriceFeed: historical observations, latest one at or before a clock

Feeds quote USD per whole unit of backing asset with 8 decimals. The engine
never reads a feed directly; it goes through PriceOracleAdapter, and any
failure there aborts the calling operation.
"""

from bisect import bisect_right
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from .core import (
    ADDITIONAL_FEED_PRECISION, ORACLE_TIMEOUT,
    InvalidPrice, PriceFeed, PriceQuote, StalePrice,
)


class PriceOracleAdapter:
    """
    Staleness-checked wrapper around a PriceFeed.

    A quote is fresh while `now - updated_at <= max_staleness`; exactly
    max_staleness old still counts as fresh. There is no retry: a stale or
    non-positive price raises and the caller aborts.
    """

    def __init__(self, feed: PriceFeed, max_staleness: timedelta = ORACLE_TIMEOUT):
        """
        Args:
            feed: Underlying price source
            max_staleness: Oldest acceptable quote age (default: 3 hours)
        """
        if max_staleness < timedelta(0):
            raise ValueError(f"max_staleness cannot be negative, got {max_staleness}")
        self.feed = feed
        self.max_staleness = max_staleness

    def get_fresh_quote(self, now: datetime) -> PriceQuote:
        """
        Return the feed's latest quote after validating it.

        Raises:
            StalePrice: If the quote is older than max_staleness at `now`
            InvalidPrice: If the quoted price is not positive
        """
        quote = self.feed.latest_price()
        age = now - quote.updated_at
        if age > self.max_staleness:
            raise StalePrice(
                f"price updated at {quote.updated_at} is {age} old at {now} "
                f"(max {self.max_staleness})"
            )
        if quote.price <= 0:
            raise InvalidPrice(f"oracle returned non-positive price {quote.price}")
        return quote

    def get_fresh_price(self, now: datetime) -> int:
        """Raw 8-decimal price of one unit of backing asset."""
        return self.get_fresh_quote(now).price

    def get_normalized_price(self, now: datetime) -> int:
        """18-decimal USD price of one unit of backing asset."""
        return self.get_fresh_price(now) * ADDITIONAL_FEED_PRECISION

    def __repr__(self):
        return f"PriceOracleAdapter({self.feed!r}, max_staleness={self.max_staleness})"


class StaticPriceFeed:
    """
    Feed holding a single observation, updated explicitly.

    Mirrors a push oracle: the price only changes when update_price() is
    called, and updated_at records when that happened.
    """

    decimals = 8

    def __init__(self, price: int, updated_at: datetime):
        self.price = price
        self.updated_at = updated_at

    def latest_price(self) -> PriceQuote:
        return PriceQuote(self.price, self.updated_at)

    def update_price(self, price: int, updated_at: datetime) -> None:
        """Publish a new observation."""
        self.price = price
        self.updated_at = updated_at

    def __repr__(self):
        return f"StaticPriceFeed(price={self.price}, updated_at={self.updated_at})"


class TimeSeriesPriceFeed:
    """
    Feed backed by a history of observations.

    latest_price() returns the most recent observation at or before the
    clock's current time (or the newest observation when no clock is set).
    """

    decimals = 8

    def __init__(
        self,
        price_path: Optional[List[Tuple[datetime, int]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the feed.

        Args:
            price_path: Optional list of (timestamp, price) observations
            clock: Callable returning the current time (e.g. lambda: engine.current_time)

        Example:
            feed = TimeSeriesPriceFeed([(t0, 2000_0000_0000), (t1, 1900_0000_0000)])
            feed.clock = lambda: engine.current_time
        """
        self.clock = clock
        self.history: List[Tuple[datetime, int]] = sorted(price_path or [], key=lambda x: x[0])

    def add_price(self, timestamp: datetime, price: int) -> None:
        """Add an observation, keeping history in chronological order."""
        self.history.append((timestamp, price))
        self.history.sort(key=lambda x: x[0])

    def price_at(self, timestamp: datetime) -> Optional[PriceQuote]:
        """
        Return the latest observation at or before timestamp, or None.

        Uses binary search for O(log n) lookup.
        """
        timestamps = [ts for ts, _ in self.history]
        idx = bisect_right(timestamps, timestamp)
        if idx == 0:
            return None
        ts, price = self.history[idx - 1]
        return PriceQuote(price, ts)

    def latest_price(self) -> PriceQuote:
        """
        Raises:
            InvalidPrice: If no observation exists at or before the clock
        """
        if not self.history:
            raise InvalidPrice("price feed has no observations")
        if self.clock is None:
            ts, price = self.history[-1]
            return PriceQuote(price, ts)
        quote = self.price_at(self.clock())
        if quote is None:
            raise InvalidPrice(f"price feed has no observation at or before {self.clock()}")
        return quote

    def as_dict(self) -> Dict[datetime, int]:
        return dict(self.history)

    def __repr__(self):
        return f"TimeSeriesPriceFeed({len(self.history)} observations)"

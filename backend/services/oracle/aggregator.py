from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from config import settings
from services.oracle.feeds import (
    CoinGeckoFeed,
    PriceFeed,
    PythFeed,
    USDC_MINT,
    USDT_MINT,
)
from utils.clock import Clock, system_clock
from utils.logger import oracle_logger as logger

STABLE_ASSETS = frozenset({"USDC", "USDT", USDC_MINT, USDT_MINT})


def is_stable(asset: str) -> bool:
    return asset in STABLE_ASSETS or asset.upper() in STABLE_ASSETS


@dataclass
class _CacheEntry:
    price: float
    source: str
    expires_at: datetime


class PriceOracle:
    """Resolve USD prices from a primary feed with a fallback and a short TTL cache.

    Stablecoins short-circuit to exactly 1.0 without touching any feed. A
    cached price is served for ``ORACLE_CACHE_TTL_SECONDS`` so one decision
    window sees one price even if a feed is flapping.
    """

    def __init__(
        self,
        primary: Optional[PriceFeed] = None,
        fallback: Optional[PriceFeed] = None,
        cache_ttl_seconds: Optional[float] = None,
        clock: Clock = system_clock,
    ):
        self.primary = primary or PythFeed()
        self.fallback = fallback or CoinGeckoFeed()
        ttl = settings.ORACLE_CACHE_TTL_SECONDS if cache_ttl_seconds is None else cache_ttl_seconds
        self.cache_ttl = timedelta(seconds=ttl)
        self.clock = clock
        self._cache: dict[str, _CacheEntry] = {}

    async def get_price_usd(self, asset: str) -> float:
        if is_stable(asset):
            return 1.0

        now = self.clock.now()
        cached = self._cache.get(asset)
        if cached and now < cached.expires_at:
            return cached.price

        source = self.primary.name
        try:
            price = await self.primary.get_price_usd(asset)
        except Exception as exc:
            logger.warning(
                "Primary price feed failed, using fallback",
                asset=asset,
                primary=self.primary.name,
                fallback=self.fallback.name,
                error=str(exc),
            )
            source = self.fallback.name
            price = await self.fallback.get_price_usd(asset)

        self._cache[asset] = _CacheEntry(price=price, source=source, expires_at=now + self.cache_ttl)
        logger.debug("Resolved USD price", asset=asset, price=price, source=source)
        return price

    async def get_price_usd_safe(self, asset: str) -> float:
        """Like ``get_price_usd`` but returns 0.0 instead of raising."""
        try:
            return await self.get_price_usd(asset)
        except Exception as exc:
            logger.warning("No USD price available", asset=asset, error=str(exc))
            return 0.0

    def clear_cache(self) -> None:
        self._cache.clear()

    async def close(self) -> None:
        await self.primary.close()
        await self.fallback.close()


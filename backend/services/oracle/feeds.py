"""USD price feeds: Pyth Hermes (primary) and CoinGecko (fallback)."""

from __future__ import annotations

from typing import Optional

import httpx

from config import settings
from utils.logger import get_logger

logger = get_logger("oracle")

SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"

_PYTH_SOL = "0xe62df6c8b4a85fe1a67db44dc12de5db330f7ac66b72dc658afedf0f4a415b43"
_PYTH_USDC = "0xeaa020c61cc479712813461ce153894a96a6c00b21ed0cfc2798d1f9a9e9c94a"

PYTH_FEED_IDS = {
    SOL_MINT: _PYTH_SOL,
    USDC_MINT: _PYTH_USDC,
    "SOL": _PYTH_SOL,
    "USDC": _PYTH_USDC,
}

COINGECKO_IDS = {
    SOL_MINT: "solana",
    USDC_MINT: "usd-coin",
    "SOL": "solana",
    "USDC": "usd-coin",
}


class PriceFeedError(RuntimeError):
    """A feed could not produce a price for the requested asset."""


def _lookup(table: dict[str, str], asset: str) -> Optional[str]:
    return table.get(asset.upper()) or table.get(asset)


class PriceFeed:
    """Base class for a single upstream price source."""

    name = "feed"

    def __init__(self, timeout: float, client: Optional[httpx.AsyncClient] = None):
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Accept": "application/json", "User-Agent": "aegis-node/1.0"},
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    async def get_price_usd(self, asset: str) -> float:
        raise NotImplementedError


class PythFeed(PriceFeed):
    name = "pyth"

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None, client=None):
        super().__init__(timeout or settings.PYTH_TIMEOUT_SECONDS, client)
        self.base_url = base_url or settings.PYTH_HERMES_URL

    async def get_price_usd(self, asset: str) -> float:
        feed_id = _lookup(PYTH_FEED_IDS, asset)
        if not feed_id:
            raise PriceFeedError(f"no pyth feed for mint: {asset}")

        client = await self._get_client()
        try:
            response = await client.get(self.base_url, params={"ids[]": feed_id}, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise PriceFeedError(f"pyth request failed: {exc}") from exc

        parsed = (data.get("parsed") or [None])[0] if isinstance(data, dict) else None
        if not parsed:
            raise PriceFeedError("pyth returned no price data")
        try:
            price = float(parsed["price"]["price"])
            expo = int(parsed["price"]["expo"])
        except (KeyError, TypeError, ValueError) as exc:
            raise PriceFeedError("pyth returned a malformed price") from exc
        return price * (10**expo)


class CoinGeckoFeed(PriceFeed):
    name = "coingecko"

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None, client=None):
        super().__init__(timeout or settings.COINGECKO_TIMEOUT_SECONDS, client)
        self.base_url = base_url or settings.COINGECKO_API_URL

    async def get_price_usd(self, asset: str) -> float:
        coin_id = _lookup(COINGECKO_IDS, asset)
        if not coin_id:
            raise PriceFeedError(f"no coingecko id for mint: {asset}")

        client = await self._get_client()
        try:
            response = await client.get(
                f"{self.base_url}/simple/price",
                params={"ids": coin_id, "vs_currencies": "usd"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise PriceFeedError(f"coingecko request failed: {exc}") from exc

        price = (data.get(coin_id) or {}).get("usd") if isinstance(data, dict) else None
        if price is None:
            raise PriceFeedError(f"coingecko returned no price for {coin_id}")
        return float(price)

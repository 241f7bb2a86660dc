from __future__ import annotations

import asyncio

from config import settings
from services.oracle.aggregator import PriceOracle
from services.oracle.feeds import SOL_MINT
from utils.logger import oracle_logger as logger

LAMPORTS_PER_SOL = 1_000_000_000


def resolve_asset(asset: str) -> str:
    return SOL_MINT if asset == "SOL" else asset


async def to_usd(oracle: PriceOracle, amount: float, asset: str) -> float:
    """USD value of ``amount`` units of ``asset``; zero amounts skip the lookup."""
    if amount == 0:
        return 0.0
    price = await oracle.get_price_usd_safe(resolve_asset(asset))
    return amount * price


async def portfolio_usd(oracle: PriceOracle, ledger, public_key: str) -> float:
    """USD value of the wallet's native SOL balance, 0.0 when unreadable."""
    try:
        lamports = await asyncio.wait_for(
            ledger.get_balance(public_key), timeout=settings.LEDGER_READ_TIMEOUT_SECONDS
        )
    except Exception as exc:
        logger.warning("Could not read wallet balance", public_key=public_key, error=str(exc))
        return 0.0
    return await to_usd(oracle, lamports / LAMPORTS_PER_SOL, SOL_MINT)

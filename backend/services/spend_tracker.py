from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from models.database import SpendTracking
from services.oracle.feeds import USDC_MINT
from utils.clock import Clock, system_clock
from utils.logger import get_logger

logger = get_logger("spend_tracker")

USDC_SYMBOL = "USDC"


def is_usdc(asset: str) -> bool:
    return asset.upper() == USDC_SYMBOL or asset == USDC_MINT


@dataclass
class DailySpend:
    agent_id: str
    date: str
    sol: float = 0.0
    usdc: float = 0.0
    usd: float = 0.0
    peak_portfolio_usd: float = 0.0

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "sol": self.sol,
            "usdc": self.usdc,
            "usd": self.usd,
            "peakPortfolioUSD": self.peak_portfolio_usd,
        }


def _insert_for(dialect_name: str):
    if dialect_name == "postgresql":
        return pg_insert, func.greatest
    return sqlite_insert, func.max


class SpendTracker:
    """Per-agent, per-UTC-day spend totals.

    All writes are single ``INSERT ... ON CONFLICT DO UPDATE`` statements so
    concurrent increments for the same agent and day never lose updates.
    """

    def __init__(self, session_factory, clock: Clock = system_clock):
        self.session_factory = session_factory
        self.clock = clock

    async def get_daily_spend(self, agent_id: str, date: Optional[str] = None) -> DailySpend:
        day = date or self.clock.today()
        async with self.session_factory() as session:
            row = (
                await session.execute(
                    select(SpendTracking).where(
                        SpendTracking.agent_id == agent_id,
                        SpendTracking.date == day,
                    )
                )
            ).scalar_one_or_none()
        if row is None:
            return DailySpend(agent_id=agent_id, date=day)
        return DailySpend(
            agent_id=agent_id,
            date=day,
            sol=row.total_spent_sol or 0.0,
            usdc=row.total_spent_usdc or 0.0,
            usd=row.total_spent_usd or 0.0,
            peak_portfolio_usd=row.peak_portfolio_usd or 0.0,
        )

    async def record_spend(
        self,
        agent_id: str,
        amount: float,
        asset: str,
        usd_value: float = 0.0,
        date: Optional[str] = None,
    ) -> None:
        """Add ``amount`` to the SOL or USDC bucket (by asset) and ``usd_value`` to USD."""
        day = date or self.clock.today()
        usdc = is_usdc(asset)
        delta_sol = 0.0 if usdc else float(amount)
        delta_usdc = float(amount) if usdc else 0.0

        async with self.session_factory() as session:
            conn = await session.connection()
            insert, _ = _insert_for(conn.dialect.name)
            stmt = insert(SpendTracking).values(
                agent_id=agent_id,
                date=day,
                total_spent_sol=delta_sol,
                total_spent_usdc=delta_usdc,
                total_spent_usd=float(usd_value or 0.0),
                peak_portfolio_usd=0.0,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["agent_id", "date"],
                set_={
                    "total_spent_sol": SpendTracking.total_spent_sol + stmt.excluded.total_spent_sol,
                    "total_spent_usdc": SpendTracking.total_spent_usdc + stmt.excluded.total_spent_usdc,
                    "total_spent_usd": SpendTracking.total_spent_usd + stmt.excluded.total_spent_usd,
                },
            )
            await session.execute(stmt)
            await session.commit()

        logger.debug(
            "Recorded spend",
            agent_id=agent_id,
            date=day,
            sol=delta_sol,
            usdc=delta_usdc,
            usd=usd_value,
        )

    async def update_peak_portfolio(self, agent_id: str, date: Optional[str], current_usd: float) -> None:
        """Raise the stored peak to ``current_usd`` if it is higher; never lower it."""
        day = date or self.clock.today()
        async with self.session_factory() as session:
            conn = await session.connection()
            insert, greatest = _insert_for(conn.dialect.name)
            stmt = insert(SpendTracking).values(
                agent_id=agent_id,
                date=day,
                total_spent_sol=0.0,
                total_spent_usdc=0.0,
                total_spent_usd=0.0,
                peak_portfolio_usd=float(current_usd),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["agent_id", "date"],
                set_={
                    "peak_portfolio_usd": greatest(
                        SpendTracking.peak_portfolio_usd, stmt.excluded.peak_portfolio_usd
                    ),
                },
            )
            await session.execute(stmt)
            await session.commit()

"""Capital accounting: funding injections, PnL snapshots, ledger state,
performance summaries and the accounting CSV export."""

from __future__ import annotations

import csv
import io
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import select

from models.database import CapitalEvent, CapitalEventType, TransactionStatus
from services.errors import ValidationError
from services.transactions import TransactionLog
from utils.clock import Clock, system_clock
from utils.logger import get_logger
from utils.utcnow import to_iso

logger = get_logger("capital")

STATE_WINDOW = 1000
EXPORT_LIMIT = 10_000

CSV_COLUMNS = [
    "date", "type", "intent_type", "signature", "amount_sol", "usd_value", "status", "note",
]

CONFIRMED = TransactionStatus.CONFIRMED.value


@dataclass
class CapitalLedgerState:
    agent_id: str
    total_injected_usd: float
    realized_pnl_usd: float
    unrealized_exposure_usd: float
    agent_roi: float
    total_tx_count: int
    total_volume_usd: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "agentId": self.agent_id,
            "totalInjectedUSD": self.total_injected_usd,
            "realizedPnlUSD": self.realized_pnl_usd,
            "unrealizedExposureUSD": self.unrealized_exposure_usd,
            "agentROI": self.agent_roi,
            "totalTxCount": self.total_tx_count,
            "totalVolumeUSD": self.total_volume_usd,
        }


@dataclass
class PerformanceSummary:
    agent_id: str
    confirmed_tx_count: int
    failed_tx_count: int
    rejected_tx_count: int
    total_volume_sol: float
    total_volume_usd: float
    success_rate: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "agentId": self.agent_id,
            "confirmedTxCount": self.confirmed_tx_count,
            "failedTxCount": self.failed_tx_count,
            "rejectedTxCount": self.rejected_tx_count,
            "totalVolumeSOL": self.total_volume_sol,
            "totalVolumeUSD": self.total_volume_usd,
            "successRate": self.success_rate,
        }


def capital_event_to_dict(row: CapitalEvent) -> dict[str, Any]:
    return {
        "id": row.id,
        "agentId": row.agent_id,
        "eventType": row.event_type,
        "amountSOL": row.amount_sol,
        "amountUSD": row.amount_usd,
        "note": row.source_note,
        "createdAt": to_iso(row.created_at),
    }


def _cell(value: Any) -> Any:
    return "" if value is None else value


class CapitalLedger:
    def __init__(self, session_factory, transactions: TransactionLog, clock: Clock = system_clock):
        self.session_factory = session_factory
        self.transactions = transactions
        self.clock = clock

    async def _log_event(
        self,
        agent_id: str,
        event_type: str,
        amount_sol: Optional[float],
        amount_usd: Optional[float],
        note: Optional[str],
    ) -> CapitalEvent:
        row = CapitalEvent(
            id=str(uuid.uuid4()),
            agent_id=agent_id,
            event_type=event_type,
            amount_sol=amount_sol,
            amount_usd=amount_usd,
            source_note=note,
            created_at=self.clock.now(),
        )
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()
        logger.info(
            "Capital event logged",
            agent_id=agent_id,
            event_type=event_type,
            amount_sol=amount_sol,
            amount_usd=amount_usd,
        )
        return row

    async def log_funding_event(
        self,
        agent_id: str,
        amount_sol: float,
        amount_usd: float,
        note: Optional[str] = None,
    ) -> CapitalEvent:
        if amount_sol < 0 or amount_usd < 0:
            raise ValidationError("funding amounts must be >= 0", errors=["amount: must be >= 0"])
        return await self._log_event(agent_id, CapitalEventType.FUNDING.value, amount_sol, amount_usd, note)

    async def log_pnl_snapshot(
        self,
        agent_id: str,
        realized_pnl_usd: float,
        note: Optional[str] = None,
    ) -> CapitalEvent:
        # PnL may be negative
        return await self._log_event(
            agent_id, CapitalEventType.PNL_SNAPSHOT.value, None, realized_pnl_usd, note
        )

    async def list_events(self, agent_id: str, limit: int = STATE_WINDOW) -> list[CapitalEvent]:
        async with self.session_factory() as session:
            rows = (
                await session.execute(
                    select(CapitalEvent)
                    .where(CapitalEvent.agent_id == agent_id)
                    .order_by(CapitalEvent.created_at.desc(), CapitalEvent.id.desc())
                    .limit(limit)
                )
            ).scalars().all()
        return list(rows)

    async def compute_ledger_state(self, agent_id: str, current_portfolio_usd: float) -> CapitalLedgerState:
        events = await self.list_events(agent_id, STATE_WINDOW)
        txs = await self.transactions.list(agent_id, STATE_WINDOW)

        injected = sum(e.amount_usd or 0.0 for e in events if e.event_type == CapitalEventType.FUNDING.value)
        realized = sum(
            e.amount_usd or 0.0 for e in events if e.event_type == CapitalEventType.PNL_SNAPSHOT.value
        )
        confirmed = [t for t in txs if t.status == CONFIRMED]
        roi = ((current_portfolio_usd - injected) / injected) * 100 if injected > 0 else 0.0

        return CapitalLedgerState(
            agent_id=agent_id,
            total_injected_usd=injected,
            realized_pnl_usd=realized,
            unrealized_exposure_usd=current_portfolio_usd,
            agent_roi=roi,
            total_tx_count=len(confirmed),
            total_volume_usd=sum(t.usd_value or 0.0 for t in confirmed),
        )

    async def compute_performance(self, agent_id: str) -> PerformanceSummary:
        txs = await self.transactions.list(agent_id, STATE_WINDOW)
        confirmed = [t for t in txs if t.status == CONFIRMED]
        failed = [t for t in txs if t.status == TransactionStatus.FAILED.value]
        rejected = [t for t in txs if t.status.startswith("rejected")]
        return PerformanceSummary(
            agent_id=agent_id,
            confirmed_tx_count=len(confirmed),
            failed_tx_count=len(failed),
            rejected_tx_count=len(rejected),
            total_volume_sol=sum(t.amount or 0.0 for t in confirmed),
            total_volume_usd=sum(t.usd_value or 0.0 for t in confirmed),
            success_rate=len(confirmed) / len(txs) if txs else 0.0,
        )

    async def export_accounting_csv(self, agent_id: str) -> str:
        """Transactions followed by capital events, one CSV line each."""
        txs = await self.transactions.list(agent_id, EXPORT_LIMIT)
        events = await self.list_events(agent_id, EXPORT_LIMIT)

        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(CSV_COLUMNS)
        for t in txs:
            writer.writerow([
                to_iso(t.created_at), "transaction", t.intent_type, _cell(t.signature),
                _cell(t.amount), _cell(t.usd_value), t.status, _cell(t.reasoning),
            ])
        for e in events:
            writer.writerow([
                to_iso(e.created_at), f"capital_{e.event_type}", "", "",
                _cell(e.amount_sol), _cell(e.amount_usd), "recorded", _cell(e.source_note),
            ])
        return buf.getvalue().rstrip("\n")

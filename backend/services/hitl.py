"""Human-in-the-loop approval queue.

Records move ``awaiting_approval -> approved | rejected | expired`` and never
back. Every transition is a conditional UPDATE guarded on the current status,
so the periodic sweep and inline approve/reject calls can race safely.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import select, update

from config import settings
from models.database import PendingStatus, PendingTransaction
from models.execution import PendingTransactionSummary
from services.errors import ConflictError, ExpiredError, ForbiddenError, NotFoundError
from services.webhooks import WebhookNotifier
from utils.clock import Clock, system_clock
from utils.logger import hitl_logger as logger
from utils.utcnow import to_iso

AWAITING = PendingStatus.AWAITING_APPROVAL.value


def _summary(row: PendingTransaction, status: Optional[str] = None) -> PendingTransactionSummary:
    return PendingTransactionSummary(
        id=row.id,
        agent_id=row.agent_id,
        intent=row.intent_json,
        intent_hash=row.intent_hash,
        policy_hash=row.policy_hash,
        reasoning=row.reasoning,
        usd_value=row.usd_value,
        simulation=row.simulation_json,
        status=status or row.status,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )


class ApprovalQueue:
    def __init__(
        self,
        session_factory,
        notifier: Optional[WebhookNotifier] = None,
        clock: Clock = system_clock,
        ttl: Optional[timedelta] = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier or WebhookNotifier()
        self.clock = clock
        self.ttl = ttl or timedelta(hours=settings.PENDING_TTL_HOURS)

    async def store(
        self,
        *,
        agent_id: str,
        intent: dict[str, Any],
        intent_hash: str,
        policy_hash: str,
        reasoning: Optional[str],
        usd_value: Optional[float],
        simulation: Optional[dict[str, Any]],
        webhook_url: Optional[str] = None,
    ) -> PendingTransactionSummary:
        now = self.clock.now()
        row = PendingTransaction(
            id=str(uuid.uuid4()),
            agent_id=agent_id,
            intent_json=intent,
            intent_hash=intent_hash,
            policy_hash=policy_hash,
            reasoning=reasoning,
            usd_value=usd_value,
            simulation_json=simulation,
            status=AWAITING,
            expires_at=now + self.ttl,
            webhook_notified=False,
            created_at=now,
        )
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()

        logger.info(
            "Transaction awaiting approval",
            agent_id=agent_id,
            pending_id=row.id,
            intent_type=intent.get("type"),
            expires_at=to_iso(row.expires_at),
        )

        if webhook_url:
            delivered = await self.notifier.notify(
                webhook_url,
                {
                    "event": "pending_approval",
                    "pendingId": row.id,
                    "agentId": agent_id,
                    "intent": intent,
                    "intentHash": intent_hash,
                    "usdValue": usd_value,
                    "expiresAt": to_iso(row.expires_at),
                },
            )
            if delivered:
                async with self.session_factory() as session:
                    await session.execute(
                        update(PendingTransaction)
                        .where(PendingTransaction.id == row.id)
                        .values(webhook_notified=True)
                    )
                    await session.commit()
                row.webhook_notified = True

        return _summary(row)

    async def list_pending(self, agent_id: str) -> list[PendingTransactionSummary]:
        """Records still awaiting a decision, newest first."""
        async with self.session_factory() as session:
            rows = (
                await session.execute(
                    select(PendingTransaction)
                    .where(
                        PendingTransaction.agent_id == agent_id,
                        PendingTransaction.status == AWAITING,
                    )
                    .order_by(PendingTransaction.created_at.desc())
                )
            ).scalars().all()
        return [_summary(row) for row in rows]

    async def get(self, tx_id: str) -> Optional[PendingTransactionSummary]:
        async with self.session_factory() as session:
            row = await session.get(PendingTransaction, tx_id)
        return _summary(row) if row else None

    async def approve(self, tx_id: str, agent_id: str) -> PendingTransactionSummary:
        return await self._resolve(tx_id, agent_id, PendingStatus.APPROVED.value)

    async def reject(self, tx_id: str, agent_id: str) -> PendingTransactionSummary:
        return await self._resolve(tx_id, agent_id, PendingStatus.REJECTED.value)

    async def _resolve(self, tx_id: str, agent_id: str, target: str) -> PendingTransactionSummary:
        now = self.clock.now()
        async with self.session_factory() as session:
            row = await session.get(PendingTransaction, tx_id)
            if row is None:
                raise NotFoundError(f"pending transaction {tx_id} not found")
            if row.agent_id != agent_id:
                raise ForbiddenError("pending transaction does not belong to this agent")
            if row.status != AWAITING:
                raise ConflictError(f"pending transaction is already {row.status}")

            if row.expires_at < now:
                await self._transition(session, tx_id, PendingStatus.EXPIRED.value, now)
                await session.commit()
                logger.info("Pending transaction expired on access", agent_id=agent_id, pending_id=tx_id)
                raise ExpiredError("pending transaction has expired")

            moved = await self._transition(session, tx_id, target, now)
            if not moved:
                await session.rollback()
                current = (
                    await session.execute(
                        select(PendingTransaction.status).where(PendingTransaction.id == tx_id)
                    )
                ).scalar_one()
                raise ConflictError(f"pending transaction is already {current}")
            await session.commit()

        logger.info("Pending transaction resolved", agent_id=agent_id, pending_id=tx_id, status=target)
        return _summary(row, status=target)

    @staticmethod
    async def _transition(session, tx_id: str, target: str, now) -> bool:
        result = await session.execute(
            update(PendingTransaction)
            .where(PendingTransaction.id == tx_id, PendingTransaction.status == AWAITING)
            .values(status=target, resolved_at=now)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) > 0

    async def expire_stale(self) -> int:
        """Mark every overdue ``awaiting_approval`` record expired; returns the count."""
        now = self.clock.now()
        async with self.session_factory() as session:
            result = await session.execute(
                update(PendingTransaction)
                .where(
                    PendingTransaction.status == AWAITING,
                    PendingTransaction.expires_at < now,
                )
                .values(status=PendingStatus.EXPIRED.value, resolved_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        expired = result.rowcount or 0
        if expired:
            logger.info("Expired stale pending transactions", count=expired)
        return expired

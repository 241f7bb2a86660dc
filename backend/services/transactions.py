"""Per-attempt transaction records.

Every execution attempt produces exactly one row here, whatever its outcome
(confirmed, rejected by policy or simulation, failed, or held for approval).
"""

from __future__ import annotations

import uuid
from typing import Any, Optional

from sqlalchemy import select

from models.database import AgentTransaction
from utils.clock import Clock, system_clock
from utils.logger import get_logger
from utils.utcnow import to_iso

logger = get_logger("transactions")

DEFAULT_LIST_LIMIT = 50


def transaction_to_dict(row: AgentTransaction) -> dict[str, Any]:
    return {
        "id": row.id,
        "agentId": row.agent_id,
        "intentType": row.intent_type,
        "reasoning": row.reasoning,
        "signature": row.signature,
        "slot": row.slot,
        "amount": row.amount,
        "tokenMint": row.token_mint,
        "status": row.status,
        "policyHash": row.policy_hash,
        "policyVersion": row.policy_version,
        "intentHash": row.intent_hash,
        "usdValue": row.usd_value,
        "error": row.error_message,
        "createdAt": to_iso(row.created_at),
    }


class TransactionLog:
    def __init__(self, session_factory, clock: Clock = system_clock):
        self.session_factory = session_factory
        self.clock = clock

    async def record(
        self,
        *,
        agent_id: str,
        intent_type: str,
        status: str,
        reasoning: Optional[str] = None,
        signature: Optional[str] = None,
        slot: Optional[int] = None,
        amount: Optional[float] = None,
        token_mint: Optional[str] = None,
        policy_hash: Optional[str] = None,
        policy_version: int = 1,
        intent_hash: Optional[str] = None,
        usd_value: Optional[float] = None,
        error_message: Optional[str] = None,
    ) -> AgentTransaction:
        row = AgentTransaction(
            id=str(uuid.uuid4()),
            agent_id=agent_id,
            intent_type=intent_type,
            reasoning=reasoning,
            signature=signature,
            slot=slot,
            amount=amount,
            token_mint=token_mint,
            status=status,
            policy_hash=policy_hash,
            policy_version=policy_version,
            intent_hash=intent_hash,
            usd_value=usd_value,
            error_message=error_message,
            created_at=self.clock.now(),
        )
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()
        logger.debug("Transaction recorded", agent_id=agent_id, tx_id=row.id, status=status)
        return row

    async def list(self, agent_id: str, limit: int = DEFAULT_LIST_LIMIT) -> list[AgentTransaction]:
        """Newest first."""
        async with self.session_factory() as session:
            rows = (
                await session.execute(
                    select(AgentTransaction)
                    .where(AgentTransaction.agent_id == agent_id)
                    .order_by(AgentTransaction.created_at.desc(), AgentTransaction.id.desc())
                    .limit(limit)
                )
            ).scalars().all()
        return list(rows)

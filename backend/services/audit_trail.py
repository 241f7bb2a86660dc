"""Append-only audit trail. Artifacts are inserted once and never updated."""

from __future__ import annotations

import json
import uuid
from typing import Optional

from sqlalchemy import select

from models.database import AuditLog
from models.execution import AuditArtifact
from utils.clock import Clock, system_clock
from utils.logger import audit_logger as logger

DEFAULT_READ_LIMIT = 50
EXPORT_LIMIT = 10_000


def make_audit_id() -> str:
    return str(uuid.uuid4())


def _artifact(row: AuditLog) -> AuditArtifact:
    return AuditArtifact(
        id=row.id,
        agent_id=row.agent_id,
        intent=row.intent_json,
        intent_hash=row.intent_hash,
        policy_hash=row.policy_hash,
        approval_state=row.approval_state,
        usd_risk_check=row.usd_risk_check_json,
        simulation_result=row.simulation_json,
        final_tx_signature=row.final_tx_signature,
        pending_id=row.pending_id,
        timestamp=row.created_at,
    )


class AuditTrail:
    def __init__(self, session_factory, clock: Clock = system_clock):
        self.session_factory = session_factory
        self.clock = clock

    async def write(self, artifact: AuditArtifact) -> AuditArtifact:
        if artifact.timestamp is None:
            artifact.timestamp = self.clock.now()
        row = AuditLog(
            id=artifact.id or make_audit_id(),
            agent_id=artifact.agent_id,
            intent_hash=artifact.intent_hash,
            policy_hash=artifact.policy_hash,
            intent_json=artifact.intent,
            usd_risk_check_json=artifact.usd_risk_check,
            simulation_json=artifact.simulation_result,
            approval_state=artifact.approval_state,
            final_tx_signature=artifact.final_tx_signature,
            pending_id=artifact.pending_id,
            created_at=artifact.timestamp,
        )
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()
        artifact.id = row.id
        logger.info(
            "Audit artifact written",
            agent_id=artifact.agent_id,
            audit_id=row.id,
            approval_state=artifact.approval_state,
            intent_hash=artifact.intent_hash,
        )
        return artifact

    async def read(self, agent_id: str, limit: Optional[int] = DEFAULT_READ_LIMIT) -> list[AuditArtifact]:
        """Newest first."""
        query = (
            select(AuditLog)
            .where(AuditLog.agent_id == agent_id)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        )
        if limit:
            query = query.limit(limit)
        async with self.session_factory() as session:
            rows = (await session.execute(query)).scalars().all()
        return [_artifact(row) for row in rows]

    async def export(self, agent_id: str) -> str:
        """Full history as pretty-printed JSON for offline review."""
        artifacts = await self.read(agent_id, limit=EXPORT_LIMIT)
        return json.dumps([a.to_dict() for a in artifacts], indent=2, ensure_ascii=False)

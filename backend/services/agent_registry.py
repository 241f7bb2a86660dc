"""Agent lifecycle: registration, policy documents and their version history,
status/mode switches, reputation and activity bookkeeping."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import case, func, select, update

from config import settings
from models.database import Agent, AgentStatus, ExecutionMode, PolicyVersion
from models.policy import AgentPolicy, USDPolicy
from services.auth import generate_api_key, hash_api_key
from services.errors import NotFoundError, ValidationError
from services.keystore import Keystore
from services.policy.hash import hash_policy
from utils.clock import Clock, system_clock
from utils.logger import get_logger

logger = get_logger("agents")


@dataclass
class CreatedAgent:
    agent: Agent
    api_key: str  # shown exactly once


def _validation_error(prefix: str, exc: PydanticValidationError) -> ValidationError:
    errors = [
        f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg')}".lstrip(": ")
        for e in exc.errors()
    ]
    return ValidationError(f"{prefix}: {', '.join(errors)}", errors=errors)


def parse_policy(document: Optional[dict[str, Any]], base: Optional[AgentPolicy] = None) -> AgentPolicy:
    try:
        return (base or AgentPolicy()).merged(document or {})
    except PydanticValidationError as exc:
        raise _validation_error("invalid policy", exc) from exc


def parse_usd_policy(document: Optional[dict[str, Any]]) -> Optional[USDPolicy]:
    if document is None:
        return None
    try:
        return USDPolicy.model_validate(document)
    except PydanticValidationError as exc:
        raise _validation_error("invalid usd policy", exc) from exc


def policy_of(agent: Agent) -> AgentPolicy:
    return AgentPolicy.model_validate(agent.policy_json or {})


def usd_policy_of(agent: Agent) -> Optional[USDPolicy]:
    if not agent.usd_policy_json:
        return None
    return USDPolicy.model_validate(agent.usd_policy_json)


def _validate_enum(value: str, enum_cls, label: str) -> str:
    allowed = [m.value for m in enum_cls]
    if value not in allowed:
        raise ValidationError(f"{label} must be one of: {', '.join(allowed)}", errors=[f"{label}: invalid value"])
    return value


class AgentRegistry:
    def __init__(
        self,
        session_factory,
        keystore: Keystore,
        clock: Clock = system_clock,
        bcrypt_rounds: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.keystore = keystore
        self.clock = clock
        self.bcrypt_rounds = bcrypt_rounds or settings.API_KEY_BCRYPT_ROUNDS

    # ------------------------------------------------------------------ #
    #  Registration / lookup
    # ------------------------------------------------------------------ #

    async def create_agent(
        self,
        *,
        policy: Optional[dict[str, Any]] = None,
        usd_policy: Optional[dict[str, Any]] = None,
        webhook_url: Optional[str] = None,
        execution_mode: str = ExecutionMode.AUTONOMOUS.value,
        min_operational_usd: Optional[float] = None,
    ) -> CreatedAgent:
        merged = parse_policy(policy)
        usd = parse_usd_policy(usd_policy)
        _validate_enum(execution_mode, ExecutionMode, "executionMode")

        wallet = self.keystore.create_wallet()
        api_key = generate_api_key()
        now = self.clock.now()
        agent = Agent(
            id=str(uuid.uuid4()),
            public_key=wallet.public_key,
            wallet_secret=wallet.secret_ref,
            api_key_hash=hash_api_key(api_key, rounds=self.bcrypt_rounds),
            policy_json=merged.to_document(),
            usd_policy_json=usd.to_document() if usd else None,
            status=AgentStatus.ACTIVE.value,
            execution_mode=execution_mode,
            reputation_score=settings.REPUTATION_INITIAL,
            min_operational_usd=min_operational_usd,
            webhook_url=webhook_url,
            created_at=now,
            updated_at=now,
        )
        async with self.session_factory() as session:
            session.add(agent)
            await session.flush()
            await self._append_policy_version(session, agent.id, merged)
            await session.commit()

        logger.info(
            "Agent registered",
            agent_id=agent.id,
            public_key=agent.public_key,
            execution_mode=execution_mode,
        )
        return CreatedAgent(agent=agent, api_key=api_key)

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        async with self.session_factory() as session:
            return await session.get(Agent, agent_id)

    async def require_agent(self, agent_id: str) -> Agent:
        agent = await self.get_agent(agent_id)
        if agent is None:
            raise NotFoundError(f"agent not found: {agent_id}")
        return agent

    async def list_agents(self) -> list[Agent]:
        async with self.session_factory() as session:
            rows = (await session.execute(select(Agent).order_by(Agent.created_at.desc()))).scalars().all()
        return list(rows)

    # ------------------------------------------------------------------ #
    #  Mutations
    # ------------------------------------------------------------------ #

    async def _update(self, agent_id: str, **values: Any) -> Agent:
        async with self.session_factory() as session:
            agent = await session.get(Agent, agent_id)
            if agent is None:
                raise NotFoundError(f"agent not found: {agent_id}")
            for key, value in values.items():
                setattr(agent, key, value)
            agent.updated_at = self.clock.now()
            await session.commit()
            return agent

    async def update_status(self, agent_id: str, status: str) -> Agent:
        _validate_enum(status, AgentStatus, "status")
        agent = await self._update(agent_id, status=status)
        logger.info("Agent status changed", agent_id=agent_id, status=status)
        return agent

    async def update_execution_mode(self, agent_id: str, mode: str) -> Agent:
        _validate_enum(mode, ExecutionMode, "executionMode")
        agent = await self._update(agent_id, execution_mode=mode)
        logger.info("Agent execution mode changed", agent_id=agent_id, execution_mode=mode)
        return agent

    async def update_usd_policy(self, agent_id: str, document: Optional[dict[str, Any]]) -> Agent:
        usd = parse_usd_policy(document)
        return await self._update(agent_id, usd_policy_json=usd.to_document() if usd else None)

    async def update_webhook(self, agent_id: str, webhook_url: Optional[str]) -> Agent:
        return await self._update(agent_id, webhook_url=webhook_url or None)

    async def update_min_operational_usd(self, agent_id: str, value: Optional[float]) -> Agent:
        if value is not None and value < 0:
            raise ValidationError("minOperationalUSD must be >= 0", errors=["minOperationalUSD: must be >= 0"])
        return await self._update(agent_id, min_operational_usd=value)

    async def update_policy(self, agent_id: str, overrides: dict[str, Any]) -> tuple[Agent, int]:
        """Merge ``overrides`` into the current policy; returns the agent and version in force."""
        async with self.session_factory() as session:
            agent = await session.get(Agent, agent_id)
            if agent is None:
                raise NotFoundError(f"agent not found: {agent_id}")
            merged = parse_policy(overrides, base=policy_of(agent))
            agent.policy_json = merged.to_document()
            agent.updated_at = self.clock.now()
            version = await self._append_policy_version(session, agent_id, merged)
            await session.commit()
        logger.info("Agent policy updated", agent_id=agent_id, version=version, policy_hash=hash_policy(merged))
        return agent, version

    async def nudge_reputation(self, agent_id: str, delta: float) -> None:
        """Shift reputation by ``delta``, clamped to [0, 10] inside the UPDATE."""
        shifted = Agent.reputation_score + delta
        clamped = case((shifted < 0, 0.0), (shifted > 10, 10.0), else_=shifted)
        async with self.session_factory() as session:
            await session.execute(
                update(Agent).where(Agent.id == agent_id).values(reputation_score=clamped)
            )
            await session.commit()

    async def touch_activity(self, agent_id: str, when: Optional[datetime] = None) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(Agent).where(Agent.id == agent_id).values(last_activity_at=when or self.clock.now())
            )
            await session.commit()

    # ------------------------------------------------------------------ #
    #  Policy versions
    # ------------------------------------------------------------------ #

    async def _append_policy_version(self, session, agent_id: str, policy: AgentPolicy) -> int:
        digest = hash_policy(policy)
        latest = (
            await session.execute(
                select(PolicyVersion)
                .where(PolicyVersion.agent_id == agent_id)
                .order_by(PolicyVersion.version.desc())
                .limit(1)
            )
        ).scalar_one_or_none()
        if latest is not None and latest.policy_hash == digest:
            return latest.version

        version = (latest.version + 1) if latest else 1
        session.add(
            PolicyVersion(
                agent_id=agent_id,
                version=version,
                policy_hash=digest,
                policy_json=policy.to_document(),
                created_at=self.clock.now(),
            )
        )
        return version

    async def policy_versions(self, agent_id: str) -> list[PolicyVersion]:
        async with self.session_factory() as session:
            rows = (
                await session.execute(
                    select(PolicyVersion)
                    .where(PolicyVersion.agent_id == agent_id)
                    .order_by(PolicyVersion.version.asc())
                )
            ).scalars().all()
        return list(rows)

    async def current_policy_version(self, agent_id: str) -> int:
        async with self.session_factory() as session:
            latest = (
                await session.execute(
                    select(func.max(PolicyVersion.version)).where(PolicyVersion.agent_id == agent_id)
                )
            ).scalar_one_or_none()
        return int(latest or 1)

"""Execution pipeline for one intent request.

Stages run in a fixed order: resolve agent, resolve + validate handler,
estimate impact, native policy, USD policy, funding alert / peak watermark,
build, simulate, then either park for approval or submit. Policy and
simulation rejections end as an ``ExecutionOutcome``; build and submission
failures raise. Every attempt leaves a transaction row and an audit artifact.

Executions for the same agent are serialized so the daily-spend read and the
later spend write cannot interleave with a second request.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from config import settings
from models.database import AgentStatus, ApprovalState, ExecutionMode, TransactionStatus
from models.execution import AuditArtifact, ExecutionReceipt, SimulationReport, UsdRiskCheck
from models.policy import ImpactEstimate, Intent, PolicyViolation
from services.agent_registry import AgentRegistry, policy_of, usd_policy_of
from services.audit_trail import AuditTrail, make_audit_id
from services.errors import (
    AegisError,
    ExecutionError,
    ForbiddenError,
    PolicyError,
    SimulationFailure,
    SimulationRiskFlag,
    USDPolicyError,
    ValidationError,
)
from services.hitl import ApprovalQueue
from services.intents.registry import IntentRegistry, intent_registry
from services.keystore import Keystore
from services.ledger.base import LedgerAdapter
from services.oracle.aggregator import PriceOracle
from services.oracle.valuation import portfolio_usd, to_usd
from services.policy.engine import PolicyEngine
from services.policy.hash import hash_intent, hash_policy
from services.policy.usd_engine import USDPolicyEngine
from services.simulation_analyzer import SimulationAnalyzer
from services.spend_tracker import SpendTracker, is_usdc
from services.transactions import TransactionLog
from services.webhooks import WebhookNotifier
from utils.clock import Clock, system_clock
from utils.logger import execution_logger as logger
from utils.utcnow import to_iso


@dataclass
class ExecutionOutcome:
    status: str
    http_status: int
    body: dict[str, Any]
    audit_id: Optional[str] = None


@dataclass
class _Attempt:
    """Everything the later stages need to know about the request in flight."""

    agent: Any
    intent: Intent
    reasoning: Optional[str]
    intent_hash: str
    policy_hash: str
    policy_version: int
    impact: Optional[ImpactEstimate] = None
    usd_value: Optional[float] = None
    usd_check: Optional[UsdRiskCheck] = None
    simulation: Optional[SimulationReport] = None

    @property
    def agent_id(self) -> str:
        return self.agent.id

    @property
    def intent_type(self) -> str:
        return self.intent.type

    def traded_amount(self) -> float:
        """Amount in units of ``impact.mint``; token intents carry it in ``params.amount``."""
        if self.impact is not None and self.impact.amount_sol > 0:
            return self.impact.amount_sol
        raw = self.intent.params.get("amount")
        if isinstance(raw, (int, float)) and not isinstance(raw, bool) and raw > 0:
            return float(raw)
        return 0.0

    def spend_amount(self) -> float:
        """Daily-bucket increment: USDC counts its units, any other SPL token only its SOL impact."""
        if self.impact is None:
            return 0.0
        if is_usdc(self.impact.mint):
            return self.traded_amount()
        return self.impact.amount_sol


def parse_intent(raw: Any) -> Intent:
    if isinstance(raw, Intent):
        return raw
    try:
        return Intent.model_validate(raw)
    except PydanticValidationError as exc:
        errors = [
            f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg')}" for e in exc.errors()
        ]
        raise ValidationError(f"invalid intent: {', '.join(errors)}", errors=errors) from exc


class ExecutionOrchestrator:
    def __init__(
        self,
        *,
        agents: AgentRegistry,
        transactions: TransactionLog,
        spend: SpendTracker,
        oracle: PriceOracle,
        ledger: LedgerAdapter,
        keystore: Keystore,
        analyzer: SimulationAnalyzer,
        approvals: ApprovalQueue,
        audit: AuditTrail,
        notifier: WebhookNotifier,
        registry: IntentRegistry = intent_registry,
        clock: Clock = system_clock,
        submit_timeout_seconds: Optional[float] = None,
    ):
        self.agents = agents
        self.transactions = transactions
        self.spend = spend
        self.oracle = oracle
        self.ledger = ledger
        self.keystore = keystore
        self.analyzer = analyzer
        self.approvals = approvals
        self.audit = audit
        self.notifier = notifier
        self.registry = registry
        self.clock = clock
        self.submit_timeout = submit_timeout_seconds or settings.LEDGER_SUBMIT_TIMEOUT_SECONDS
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def execute(self, agent_id: str, intent: Any, reasoning: Optional[str] = None) -> ExecutionOutcome:
        async with self._locks[agent_id]:
            return await self._execute(agent_id, parse_intent(intent), reasoning)

    # ------------------------------------------------------------------ #
    #  Pipeline
    # ------------------------------------------------------------------ #

    async def _execute(self, agent_id: str, intent: Intent, reasoning: Optional[str]) -> ExecutionOutcome:
        agent = await self.agents.require_agent(agent_id)
        if agent.status != AgentStatus.ACTIVE.value:
            raise ForbiddenError("agent is not active")

        handler = self.registry.resolve(intent.type)
        handler.validate(intent.params)

        policy = policy_of(agent)
        attempt = _Attempt(
            agent=agent,
            intent=intent,
            reasoning=reasoning,
            intent_hash=hash_intent(intent),
            policy_hash=hash_policy(policy),
            policy_version=await self.agents.current_policy_version(agent_id),
        )
        log = logger.with_context(agent_id=agent_id, intent_type=intent.type, intent_hash=attempt.intent_hash)

        attempt.impact = handler.estimate_impact(intent.params)
        daily = await self.spend.get_daily_spend(agent_id)

        engine = PolicyEngine(agent_id, policy, clock=self.clock)
        violations = engine.evaluate(
            intent.type,
            attempt.impact,
            spent_today_sol=daily.sol,
            last_activity_at=agent.last_activity_at,
        )
        try:
            engine.enforce(violations)
        except PolicyError as exc:
            return await self._reject_policy(attempt, exc)

        attempt.usd_value = await to_usd(self.oracle, attempt.traded_amount(), attempt.impact.mint)

        portfolio = await portfolio_usd(self.oracle, self.ledger, agent.public_key)
        usd_policy = usd_policy_of(agent)
        if usd_policy is not None:
            usd_engine = USDPolicyEngine(agent_id, usd_policy)
            usd_violations = usd_engine.evaluate(
                attempt.usd_value,
                portfolio_usd=portfolio,
                spent_today_usd=daily.usd,
                peak_portfolio_usd=daily.peak_portfolio_usd,
            )
            try:
                usd_engine.enforce(usd_violations)
            except USDPolicyError as exc:
                attempt.usd_check = UsdRiskCheck(
                    usd_value=attempt.usd_value,
                    passed=False,
                    violations=[v.render() for v in exc.violations],
                    portfolio_usd=portfolio,
                )
                return await self._reject_policy(attempt, exc)

            attempt.usd_check = UsdRiskCheck(usd_value=attempt.usd_value, passed=True, portfolio_usd=portfolio)

        self.notifier.trigger_funding_alert(agent, portfolio)
        await self.spend.update_peak_portfolio(agent_id, None, portfolio)

        try:
            tx = await handler.build_transaction(agent, self.ledger)
        except AegisError as exc:
            await self._record_failure(attempt, str(exc))
            raise

        if policy.require_simulation:
            attempt.simulation = await self.analyzer.simulate(
                tx,
                agent.public_key,
                expected_amount=tx.expected_output_amount,
                expected_mint=tx.expected_output_mint,
                usd_impact_estimate=attempt.usd_value,
            )
            if attempt.simulation.rejected:
                return await self._reject_simulation(attempt)

        if agent.execution_mode == ExecutionMode.SUPERVISED.value:
            return await self._park_for_approval(attempt)

        try:
            signer = self.keystore.signer_for(agent)
            submission = await asyncio.wait_for(self.ledger.submit(tx, signer), timeout=self.submit_timeout)
        except asyncio.TimeoutError as exc:
            message = f"transaction not confirmed within {self.submit_timeout:g}s"
            log.error("Submission timed out", timeout=self.submit_timeout)
            await self._record_failure(attempt, message)
            raise ExecutionError(f"execution failed: {message}") from exc
        except Exception as exc:
            log.exception("Submission failed", error=str(exc))
            await self._record_failure(attempt, str(exc))
            raise ExecutionError(f"execution failed: {exc}") from exc

        return await self._confirm(attempt, submission.signature, submission.slot)

    # ------------------------------------------------------------------ #
    #  Terminal stages
    # ------------------------------------------------------------------ #

    async def _record(self, attempt: _Attempt, status: str, **kwargs: Any):
        impact = attempt.impact
        return await self.transactions.record(
            agent_id=attempt.agent_id,
            intent_type=attempt.intent_type,
            status=status,
            reasoning=attempt.reasoning,
            amount=impact.amount_sol if impact else None,
            token_mint=impact.mint if impact else None,
            policy_hash=attempt.policy_hash,
            policy_version=attempt.policy_version,
            intent_hash=attempt.intent_hash,
            usd_value=attempt.usd_value,
            **kwargs,
        )

    async def _write_audit(
        self,
        attempt: _Attempt,
        approval_state: str,
        *,
        signature: Optional[str] = None,
        pending_id: Optional[str] = None,
    ) -> AuditArtifact:
        return await self.audit.write(
            AuditArtifact(
                id=make_audit_id(),
                agent_id=attempt.agent_id,
                intent=attempt.intent.to_document(),
                intent_hash=attempt.intent_hash,
                policy_hash=attempt.policy_hash,
                approval_state=approval_state,
                usd_risk_check=attempt.usd_check.to_dict() if attempt.usd_check else None,
                simulation_result=attempt.simulation.to_dict() if attempt.simulation else None,
                final_tx_signature=signature,
                pending_id=pending_id,
            )
        )

    async def _reject_policy(self, attempt: _Attempt, exc: PolicyError) -> ExecutionOutcome:
        await self._record(
            attempt,
            TransactionStatus.REJECTED_POLICY.value,
            error_message="; ".join(v.render() for v in exc.violations),
        )
        await self.agents.nudge_reputation(attempt.agent_id, settings.REPUTATION_POLICY_PENALTY)
        artifact = await self._write_audit(attempt, ApprovalState.REJECTED.value)
        logger.warning(
            "Intent rejected by policy",
            agent_id=attempt.agent_id,
            intent_type=attempt.intent_type,
            codes=_codes(exc.violations),
            usd=isinstance(exc, USDPolicyError),
        )
        body = exc.to_dict()
        if attempt.usd_check is not None:
            body["usdRiskCheck"] = attempt.usd_check.to_dict()
        return ExecutionOutcome(
            status=TransactionStatus.REJECTED_POLICY.value,
            http_status=exc.status_code,
            body=body,
            audit_id=artifact.id,
        )

    async def _reject_simulation(self, attempt: _Attempt) -> ExecutionOutcome:
        report = attempt.simulation
        if not report.success:
            exc: SimulationFailure = SimulationFailure(report.error, report.logs)
        else:
            exc = SimulationRiskFlag(report.risk_reason, report.logs)

        await self._record(attempt, TransactionStatus.REJECTED_SIMULATION.value, error_message=exc.message)
        await self.agents.nudge_reputation(attempt.agent_id, settings.REPUTATION_SIMULATION_PENALTY)
        artifact = await self._write_audit(attempt, ApprovalState.REJECTED.value)
        logger.warning(
            "Intent rejected by simulation",
            agent_id=attempt.agent_id,
            intent_type=attempt.intent_type,
            reason=exc.message,
        )
        body = exc.to_dict()
        body["simulation"] = report.to_dict()
        return ExecutionOutcome(
            status=TransactionStatus.REJECTED_SIMULATION.value,
            http_status=exc.status_code,
            body=body,
            audit_id=artifact.id,
        )

    async def _park_for_approval(self, attempt: _Attempt) -> ExecutionOutcome:
        pending = await self.approvals.store(
            agent_id=attempt.agent_id,
            intent=attempt.intent.to_document(),
            intent_hash=attempt.intent_hash,
            policy_hash=attempt.policy_hash,
            reasoning=attempt.reasoning,
            usd_value=attempt.usd_value,
            simulation=attempt.simulation.to_dict() if attempt.simulation else None,
            webhook_url=attempt.agent.webhook_url,
        )
        await self._record(attempt, TransactionStatus.PENDING_APPROVAL.value)
        await self.agents.touch_activity(attempt.agent_id)
        artifact = await self._write_audit(attempt, ApprovalState.PENDING.value, pending_id=pending.id)
        return ExecutionOutcome(
            status=pending.status,
            http_status=202,
            body={
                "status": pending.status,
                "pendingId": pending.id,
                "expiresAt": to_iso(pending.expires_at),
                "intentHash": attempt.intent_hash,
                "policyHash": attempt.policy_hash,
            },
            audit_id=artifact.id,
        )

    async def _confirm(self, attempt: _Attempt, signature: str, slot: int) -> ExecutionOutcome:
        await self._record(attempt, TransactionStatus.CONFIRMED.value, signature=signature, slot=slot)
        await self.spend.record_spend(
            attempt.agent_id,
            attempt.spend_amount(),
            attempt.impact.mint,
            usd_value=attempt.usd_value or 0.0,
        )
        await self.agents.nudge_reputation(attempt.agent_id, settings.REPUTATION_SUCCESS_DELTA)
        await self.agents.touch_activity(attempt.agent_id)
        artifact = await self._write_audit(attempt, ApprovalState.AUTO.value, signature=signature)

        report = attempt.simulation
        receipt = ExecutionReceipt(
            signature=signature,
            slot=slot,
            gas_used=report.units_consumed if report else 0,
            token_changes=list(report.token_changes) if report else [],
            post_balances=list(report.post_balances) if report else [],
            intent_hash=attempt.intent_hash,
            policy_hash=attempt.policy_hash,
            usd_value=attempt.usd_value,
        )
        logger.info(
            "Intent executed",
            agent_id=attempt.agent_id,
            intent_type=attempt.intent_type,
            signature=signature,
            slot=slot,
        )
        return ExecutionOutcome(
            status=TransactionStatus.CONFIRMED.value,
            http_status=200,
            body=receipt.to_dict(),
            audit_id=artifact.id,
        )

    async def _record_failure(self, attempt: _Attempt, message: str) -> None:
        await self._record(attempt, TransactionStatus.FAILED.value, error_message=message)
        await self._write_audit(attempt, ApprovalState.AUTO.value)

    # ------------------------------------------------------------------ #
    #  Approval decisions
    # ------------------------------------------------------------------ #

    async def approve_pending(self, agent_id: str, tx_id: str):
        summary = await self.approvals.approve(tx_id, agent_id)
        await self._audit_decision(summary, ApprovalState.APPROVED.value)
        return summary

    async def reject_pending(self, agent_id: str, tx_id: str):
        summary = await self.approvals.reject(tx_id, agent_id)
        await self._audit_decision(summary, ApprovalState.REJECTED.value)
        return summary

    async def _audit_decision(self, summary, approval_state: str) -> None:
        await self.audit.write(
            AuditArtifact(
                id=make_audit_id(),
                agent_id=summary.agent_id,
                intent=summary.intent,
                intent_hash=summary.intent_hash,
                policy_hash=summary.policy_hash,
                approval_state=approval_state,
                simulation_result=summary.simulation,
                pending_id=summary.id,
            )
        )


def _codes(violations: list[PolicyViolation]) -> list[str]:
    return [v.code for v in violations]

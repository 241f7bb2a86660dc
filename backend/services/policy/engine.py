from __future__ import annotations

import math
from datetime import datetime
from typing import Iterable, Optional

from models.policy import AgentPolicy, ImpactEstimate, PolicyViolation
from services.errors import PolicyError
from utils.clock import Clock, system_clock
from utils.logger import policy_logger as logger


def format_number(value: float) -> str:
    """Render like a JS template literal: integral floats drop the ``.0``."""
    value = float(value)
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


class PolicyEngine:
    """Native-asset (SOL) rule checks for one agent.

    Every ``check_*`` returns a ``PolicyViolation`` or ``None`` and never
    raises for a failing rule. ``enforce`` collects all of them at once.
    """

    def __init__(self, agent_id: str, policy: AgentPolicy, clock: Clock = system_clock):
        self.agent_id = agent_id
        self.policy = policy
        self.clock = clock

    def check_intent_type(self, intent_type: str) -> Optional[PolicyViolation]:
        allowed = self.policy.allowed_intents
        if intent_type not in allowed:
            return PolicyViolation(
                code="INTENT_NOT_ALLOWED",
                message=f'intent type "{intent_type}" is not in allowedIntents: [{", ".join(allowed)}]',
            )
        return None

    def check_mint(self, mint: str) -> Optional[PolicyViolation]:
        allowed = self.policy.allowed_mints
        if mint not in allowed:
            return PolicyViolation(
                code="MINT_NOT_ALLOWED",
                message=f'mint "{mint}" is not in allowedMints: [{", ".join(allowed)}]',
            )
        return None

    def check_tx_amount(self, amount_sol: float) -> Optional[PolicyViolation]:
        cap = self.policy.max_tx_amount_sol
        if amount_sol > cap:
            return PolicyViolation(
                code="AMOUNT_EXCEEDS_TX_CAP",
                message=f"amount {format_number(amount_sol)} SOL exceeds maxTxAmountSOL {format_number(cap)}",
            )
        return None

    def check_daily_spend(self, amount_sol: float, spent_today_sol: float) -> Optional[PolicyViolation]:
        limit = self.policy.daily_spend_limit_sol
        projected = spent_today_sol + amount_sol
        if projected > limit:
            return PolicyViolation(
                code="DAILY_SPEND_LIMIT_EXCEEDED",
                message=f"projected daily spend {projected:.4f} SOL exceeds limit {format_number(limit)} SOL",
            )
        return None

    def check_slippage(self, slippage_bps: int) -> Optional[PolicyViolation]:
        cap = self.policy.max_slippage_bps
        if slippage_bps > cap:
            return PolicyViolation(
                code="SLIPPAGE_TOO_HIGH",
                message=f"slippage {slippage_bps} bps exceeds maxSlippageBps {cap}",
            )
        return None

    def check_cooldown(self, last_activity_at: Optional[datetime]) -> Optional[PolicyViolation]:
        cooldown_ms = self.policy.cooldown_ms
        if not cooldown_ms or last_activity_at is None:
            return None
        elapsed_ms = (self.clock.now() - last_activity_at).total_seconds() * 1000
        if elapsed_ms < cooldown_ms:
            remaining = math.ceil((cooldown_ms - elapsed_ms) / 1000)
            return PolicyViolation(
                code="COOLDOWN_ACTIVE",
                message=f"agent is in cooldown, {remaining}s remaining",
            )
        return None

    def check_risk_score(self, risk_score: float) -> Optional[PolicyViolation]:
        cap = self.policy.max_risk_score
        if cap is None:
            return None
        if risk_score > cap:
            return PolicyViolation(
                code="RISK_SCORE_TOO_HIGH",
                message=f"intent risk score {format_number(risk_score)} exceeds maxRiskScore {format_number(cap)}",
            )
        return None

    def evaluate(
        self,
        intent_type: str,
        impact: ImpactEstimate,
        *,
        spent_today_sol: float,
        last_activity_at: Optional[datetime],
    ) -> list[Optional[PolicyViolation]]:
        """Run every applicable check; the result still contains ``None`` entries."""
        results = [
            self.check_intent_type(intent_type),
            self.check_mint(impact.mint),
            self.check_tx_amount(impact.amount_sol),
            self.check_daily_spend(impact.amount_sol, spent_today_sol),
            self.check_cooldown(last_activity_at),
            self.check_risk_score(impact.risk_score),
        ]
        if impact.slippage_bps is not None:
            results.append(self.check_slippage(impact.slippage_bps))
        return results

    def enforce(self, violations: Iterable[Optional[PolicyViolation]]) -> None:
        actual = [v for v in violations if v is not None]
        if actual:
            logger.warning(
                "Policy violations",
                agent_id=self.agent_id,
                codes=[v.code for v in actual],
            )
            raise PolicyError(actual)

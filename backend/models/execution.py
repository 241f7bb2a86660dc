"""Value objects produced along the execution pipeline.

These are plain dataclasses; they are serialized to camelCase dictionaries
only at the persistence and HTTP edges.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from utils.utcnow import to_iso


@dataclass
class TokenChange:
    mint: str
    delta: float
    owner: str

    def to_dict(self) -> dict[str, Any]:
        return {"mint": self.mint, "delta": self.delta, "owner": self.owner}


@dataclass
class BalanceSnapshot:
    address: str
    lamports: int

    def to_dict(self) -> dict[str, Any]:
        return {"address": self.address, "lamports": self.lamports}


@dataclass
class SimulationReport:
    success: bool
    error: Optional[str] = None
    logs: list[str] = field(default_factory=list)
    compute_unit_forecast: int = 0
    token_changes: list[TokenChange] = field(default_factory=list)
    post_balances: list[BalanceSnapshot] = field(default_factory=list)
    slippage_actual: Optional[float] = None
    expected_delta_violation: bool = False
    risky_effects: bool = False
    risk_reason: Optional[str] = None
    usd_impact_estimate: Optional[float] = None
    units_consumed: int = 0

    @property
    def rejected(self) -> bool:
        return not self.success or self.risky_effects

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error,
            "logs": list(self.logs),
            "computeUnitForecast": self.compute_unit_forecast,
            "tokenChanges": [c.to_dict() for c in self.token_changes],
            "postBalances": [b.to_dict() for b in self.post_balances],
            "slippageActual": self.slippage_actual,
            "expectedDeltaViolation": self.expected_delta_violation,
            "riskyEffects": self.risky_effects,
            "riskReason": self.risk_reason,
            "usdImpactEstimate": self.usd_impact_estimate,
        }


@dataclass
class UsdRiskCheck:
    usd_value: float
    passed: bool
    violations: list[str] = field(default_factory=list)
    portfolio_usd: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "usdValue": self.usd_value,
            "passed": self.passed,
            "violations": list(self.violations),
        }
        if self.portfolio_usd is not None:
            data["portfolioUSD"] = self.portfolio_usd
        return data


@dataclass
class ExecutionReceipt:
    signature: str
    slot: int
    gas_used: int
    token_changes: list[TokenChange] = field(default_factory=list)
    post_balances: list[BalanceSnapshot] = field(default_factory=list)
    intent_hash: Optional[str] = None
    policy_hash: Optional[str] = None
    usd_value: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "signature": self.signature,
            "slot": self.slot,
            "gasUsed": self.gas_used,
            "tokenChanges": [c.to_dict() for c in self.token_changes],
            "postBalances": [b.to_dict() for b in self.post_balances],
            "intentHash": self.intent_hash,
            "policyHash": self.policy_hash,
            "usdValue": self.usd_value,
        }


@dataclass
class AuditArtifact:
    id: str
    agent_id: str
    intent: dict[str, Any]
    intent_hash: str
    policy_hash: str
    approval_state: str
    usd_risk_check: Optional[dict[str, Any]] = None
    simulation_result: Optional[dict[str, Any]] = None
    final_tx_signature: Optional[str] = None
    pending_id: Optional[str] = None
    timestamp: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "id": self.id,
            "agentId": self.agent_id,
            "intent": self.intent,
            "intentHash": self.intent_hash,
            "policyHash": self.policy_hash,
            "usdRiskCheck": self.usd_risk_check,
            "simulationResult": self.simulation_result,
            "approvalState": self.approval_state,
            "finalTxSignature": self.final_tx_signature,
            "timestamp": to_iso(self.timestamp),
        }
        if self.pending_id:
            data["pendingId"] = self.pending_id
        return data


@dataclass
class PendingTransactionSummary:
    id: str
    agent_id: str
    intent: dict[str, Any]
    intent_hash: str
    policy_hash: str
    reasoning: Optional[str]
    usd_value: Optional[float]
    simulation: Optional[dict[str, Any]]
    status: str
    expires_at: datetime
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "agentId": self.agent_id,
            "intent": self.intent,
            "intentHash": self.intent_hash,
            "policyHash": self.policy_hash,
            "reasoning": self.reasoning,
            "usdValue": self.usd_value,
            "simulation": self.simulation,
            "status": self.status,
            "expiresAt": to_iso(self.expires_at),
            "createdAt": to_iso(self.created_at),
        }

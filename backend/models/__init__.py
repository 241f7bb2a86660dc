from .policy import AgentPolicy, USDPolicy, Intent, ImpactEstimate, PolicyViolation
from .execution import (
    AuditArtifact,
    BalanceSnapshot,
    ExecutionReceipt,
    PendingTransactionSummary,
    SimulationReport,
    TokenChange,
    UsdRiskCheck,
)

__all__ = [
    "AgentPolicy",
    "USDPolicy",
    "Intent",
    "ImpactEstimate",
    "PolicyViolation",
    "AuditArtifact",
    "BalanceSnapshot",
    "ExecutionReceipt",
    "PendingTransactionSummary",
    "SimulationReport",
    "TokenChange",
    "UsdRiskCheck",
]

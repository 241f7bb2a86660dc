from services.ledger.base import (
    AccountSpec,
    DryRunResult,
    InstructionSpec,
    LedgerAdapter,
    LedgerError,
    Submission,
    TokenBalance,
    UnsignedTransaction,
)

__all__ = [
    "AccountSpec",
    "DryRunResult",
    "InstructionSpec",
    "LedgerAdapter",
    "LedgerError",
    "Submission",
    "TokenBalance",
    "UnsignedTransaction",
]

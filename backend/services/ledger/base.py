"""Ledger adapter contract and the plain data types that cross it.

Intent handlers describe transactions with these types; only the concrete
adapter knows how to compile, sign and serialize them for a real chain.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional


class LedgerError(RuntimeError):
    """Raised by adapters when the ledger or its RPC endpoint misbehaves."""


@dataclass
class AccountSpec:
    pubkey: str
    is_signer: bool = False
    is_writable: bool = False


@dataclass
class InstructionSpec:
    program_id: str
    accounts: list[AccountSpec] = field(default_factory=list)
    data: bytes = b""


@dataclass
class UnsignedTransaction:
    """A transaction ready to simulate and, once signed, to submit.

    Either ``instructions`` (compiled by the adapter) or ``serialized`` (a
    pre-built versioned transaction from a swap aggregator) is set.
    """

    payer: str
    instructions: list[InstructionSpec] = field(default_factory=list)
    recent_blockhash: Optional[str] = None
    versioned: bool = False
    serialized: Optional[bytes] = None
    extra_signers: list[bytes] = field(default_factory=list)  # ephemeral account secret keys
    expected_output_amount: Optional[float] = None
    expected_output_mint: Optional[str] = None


@dataclass
class TokenBalance:
    account_index: int
    mint: str
    amount: int  # raw base units
    owner: Optional[str] = None


@dataclass
class DryRunResult:
    err: Optional[Any] = None
    logs: list[str] = field(default_factory=list)
    units_consumed: int = 0
    pre_token_balances: list[TokenBalance] = field(default_factory=list)
    post_token_balances: list[TokenBalance] = field(default_factory=list)
    # Post-state lamports for the addresses requested, in request order.
    account_lamports: list[Optional[int]] = field(default_factory=list)


@dataclass
class Submission:
    signature: str
    slot: int = 0


class LedgerAdapter(ABC):
    """Everything the pipeline needs from the chain."""

    @abstractmethod
    async def latest_blockhash(self) -> str: ...

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        """Native balance in lamports."""

    @abstractmethod
    async def account_exists(self, address: str) -> bool: ...

    @abstractmethod
    async def fetch_swap_transaction(
        self,
        *,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
        user_public_key: str,
    ) -> tuple[bytes, Optional[int]]:
        """Return a serialized aggregator swap transaction and its quoted output."""

    @abstractmethod
    async def simulate(self, tx: UnsignedTransaction, addresses: list[str]) -> DryRunResult: ...

    @abstractmethod
    async def submit(self, tx: UnsignedTransaction, signer) -> Submission:
        """Sign, send and confirm. Implementations must never resend on their own."""

    async def close(self) -> None:
        return None

from __future__ import annotations

import base64
import binascii
import math
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from models.policy import ImpactEstimate
from services.errors import BuildError, ValidationError
from services.ledger.base import AccountSpec, InstructionSpec, LedgerAdapter, UnsignedTransaction
from services.ledger.instructions import is_valid_pubkey
from utils.logger import get_logger

logger = get_logger("intents")

LAMPORTS_PER_SOL = 1_000_000_000
SOL_SYMBOL = "SOL"


class IntentParams(BaseModel):
    """Base for per-intent parameter structs; numbers and strings are not coerced."""

    model_config = ConfigDict(strict=True, extra="ignore", populate_by_name=True)


class AccountMetaParams(IntentParams):
    pubkey: str
    is_signer: bool = Field(alias="isSigner")
    is_writable: bool = Field(alias="isWritable")

    def to_spec(self) -> AccountSpec:
        return AccountSpec(self.pubkey, is_signer=self.is_signer, is_writable=self.is_writable)


def decode_base64(value: str) -> Optional[bytes]:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None


def raw_instruction_errors(prefix: str, program_id: str, data: str, accounts: list[AccountMetaParams]) -> list[str]:
    errors = [pubkey_error(f"{prefix}programId", program_id, "programId")]
    if decode_base64(data) is None:
        errors.append(f"{prefix}data: must be base64")
    for i, account in enumerate(accounts):
        errors.append(pubkey_error(f"{prefix}accounts.{i}.pubkey", account.pubkey, "account pubkey"))
    return [e for e in errors if e]


def raw_instruction(program_id: str, data: str, accounts: list[AccountMetaParams]) -> InstructionSpec:
    return InstructionSpec(
        program_id=program_id,
        accounts=[a.to_spec() for a in accounts],
        data=decode_base64(data) or b"",
    )


P = TypeVar("P", bound=IntentParams)


def _format_error(error: dict[str, Any]) -> str:
    loc = ".".join(str(part) for part in error.get("loc", ()))
    return f"{loc}: {error.get('msg')}" if loc else str(error.get("msg"))


class IntentHandler(ABC, Generic[P]):
    """Validate, estimate and build one kind of intent.

    A handler instance serves a single request: ``validate`` stores the parsed
    parameters that ``build_transaction`` later uses.
    """

    intent_type: ClassVar[str]
    params_model: ClassVar[type[IntentParams]]

    def __init__(self) -> None:
        self.params: Optional[P] = None

    def parse(self, params: Any) -> P:
        if not isinstance(params, dict):
            raise ValidationError(
                f"invalid {self.intent_type} params: params must be an object",
                errors=["params: must be an object"],
            )
        try:
            parsed = self.params_model.model_validate(params)
        except PydanticValidationError as exc:
            errors = [_format_error(e) for e in exc.errors()]
            raise ValidationError(f"invalid {self.intent_type} params: {', '.join(errors)}", errors=errors) from exc
        errors = list(self.semantic_errors(parsed))
        if errors:
            raise ValidationError(f"invalid {self.intent_type} params: {', '.join(errors)}", errors=errors)
        return parsed  # type: ignore[return-value]

    def semantic_errors(self, params: P) -> list[str]:
        """Checks pydantic cannot express (address validity and similar)."""
        return []

    def validate(self, params: Any) -> P:
        self.params = self.parse(params)
        return self.params

    @abstractmethod
    def estimate_impact(self, params: Any) -> ImpactEstimate: ...

    async def build_transaction(self, agent, ledger: LedgerAdapter) -> UnsignedTransaction:
        if self.params is None:
            raise BuildError(f"{self.intent_type} handler used before validate()")
        try:
            return await self._build(agent, ledger, self.params)
        except BuildError:
            raise
        except Exception as exc:
            logger.error(
                "Transaction build failed",
                intent_type=self.intent_type,
                agent_id=getattr(agent, "id", None),
                error=str(exc),
            )
            raise BuildError(f"transaction build failed: {exc}") from exc

    @abstractmethod
    async def _build(self, agent, ledger: LedgerAdapter, params: P) -> UnsignedTransaction: ...


def risk_score(value: float) -> int:
    """Nearest integer, halves rounded up."""
    return math.floor(value + 0.5)


def pubkey_error(field: str, value: str, label: str) -> Optional[str]:
    if is_valid_pubkey(value):
        return None
    return f"{field}: invalid {label}: {value}"

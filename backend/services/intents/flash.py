from __future__ import annotations

from pydantic import Field

from models.policy import ImpactEstimate
from services.intents.base import (
    AccountMetaParams,
    IntentHandler,
    IntentParams,
    pubkey_error,
    raw_instruction,
    raw_instruction_errors,
)
from services.ledger.base import LedgerAdapter, UnsignedTransaction


class SerializedInstruction(IntentParams):
    program_id: str = Field(alias="programId")
    data: str
    accounts: list[AccountMetaParams]


class FlashParams(IntentParams):
    mint: str = Field(min_length=32)
    amount: float = Field(gt=0)
    instructions: list[SerializedInstruction] = Field(min_length=1, max_length=10)


class FlashIntentHandler(IntentHandler[FlashParams]):
    """Atomic multi-instruction bundle compiled into a v0 message."""

    intent_type = "flash"
    params_model = FlashParams

    def semantic_errors(self, params: FlashParams) -> list[str]:
        errors = []
        mint_error = pubkey_error("mint", params.mint, "mint address")
        if mint_error:
            errors.append(mint_error)
        for i, item in enumerate(params.instructions):
            errors.extend(raw_instruction_errors(f"instructions.{i}.", item.program_id, item.data, item.accounts))
        return errors

    def estimate_impact(self, params) -> ImpactEstimate:
        p = self.parse(params)
        return ImpactEstimate(
            amount_sol=0.0,
            mint=p.mint,
            risk_score=min(70 + len(p.instructions) * 2, 90),
        )

    async def _build(self, agent, ledger: LedgerAdapter, params: FlashParams) -> UnsignedTransaction:
        return UnsignedTransaction(
            payer=agent.public_key,
            instructions=[raw_instruction(i.program_id, i.data, i.accounts) for i in params.instructions],
            recent_blockhash=await ledger.latest_blockhash(),
            versioned=True,
        )

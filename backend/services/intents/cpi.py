from __future__ import annotations

from pydantic import Field

from models.policy import ImpactEstimate
from services.intents.base import (
    SOL_SYMBOL,
    AccountMetaParams,
    IntentHandler,
    IntentParams,
    raw_instruction,
    raw_instruction_errors,
)
from services.ledger.base import LedgerAdapter, UnsignedTransaction


class CpiParams(IntentParams):
    program_id: str = Field(alias="programId", min_length=32)
    data: str
    accounts: list[AccountMetaParams] = Field(max_length=32)


class CpiIntentHandler(IntentHandler[CpiParams]):
    """Arbitrary single program call. Always scored as high risk."""

    intent_type = "cpi"
    params_model = CpiParams

    def semantic_errors(self, params: CpiParams) -> list[str]:
        return raw_instruction_errors("", params.program_id, params.data, params.accounts)

    def estimate_impact(self, params) -> ImpactEstimate:
        self.parse(params)
        return ImpactEstimate(amount_sol=0.0, mint=SOL_SYMBOL, risk_score=90)

    async def _build(self, agent, ledger: LedgerAdapter, params: CpiParams) -> UnsignedTransaction:
        return UnsignedTransaction(
            payer=agent.public_key,
            instructions=[raw_instruction(params.program_id, params.data, params.accounts)],
            recent_blockhash=await ledger.latest_blockhash(),
        )

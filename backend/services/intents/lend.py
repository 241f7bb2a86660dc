from __future__ import annotations

import json
import math
from typing import Literal

from pydantic import Field

from models.policy import ImpactEstimate
from services.intents.base import IntentHandler, IntentParams, pubkey_error
from services.ledger import instructions as ix
from services.ledger.base import LedgerAdapter, UnsignedTransaction


class LendParams(IntentParams):
    protocol: Literal["marginfi", "solend"]
    mint: str = Field(min_length=32)
    amount: float = Field(gt=0)
    decimals: int = Field(default=6, ge=0, le=18)


class LendIntentHandler(IntentHandler[LendParams]):
    """Lending deposit, recorded on-chain as a structured memo."""

    intent_type = "lend"
    params_model = LendParams

    def semantic_errors(self, params: LendParams) -> list[str]:
        error = pubkey_error("mint", params.mint, "mint address")
        return [error] if error else []

    def estimate_impact(self, params) -> ImpactEstimate:
        p = self.parse(params)
        return ImpactEstimate(amount_sol=0.0, mint=p.mint, risk_score=15)

    async def _build(self, agent, ledger: LedgerAdapter, params: LendParams) -> UnsignedTransaction:
        raw_amount = math.floor(params.amount * (10**params.decimals))
        memo_text = json.dumps(
            {
                "op": "lend_deposit",
                "protocol": params.protocol,
                "mint": params.mint,
                "amount": raw_amount,
            },
            separators=(",", ":"),
        )
        return UnsignedTransaction(
            payer=agent.public_key,
            instructions=[ix.memo(agent.public_key, memo_text)],
            recent_blockhash=await ledger.latest_blockhash(),
        )

from __future__ import annotations

import math

from pydantic import Field

from models.policy import ImpactEstimate
from services.intents.base import IntentHandler, IntentParams, risk_score
from services.ledger.base import LedgerAdapter, UnsignedTransaction
from services.oracle.feeds import SOL_MINT, USDC_MINT

KNOWN_MINTS = {
    "SOL": SOL_MINT,
    "USDC": USDC_MINT,
}


def resolve_mint(symbol: str) -> str:
    return KNOWN_MINTS.get(symbol.upper(), symbol)


class SwapParams(IntentParams):
    from_mint: str = Field(alias="fromMint", min_length=1)
    to_mint: str = Field(alias="toMint", min_length=1)
    amount: float = Field(gt=0)
    slippage_bps: int = Field(default=50, ge=0, le=10_000, alias="slippageBps")


class SwapIntentHandler(IntentHandler[SwapParams]):
    """Token swap routed through the aggregator; the route arrives pre-built."""

    intent_type = "swap"
    params_model = SwapParams

    def estimate_impact(self, params) -> ImpactEstimate:
        p = self.parse(params)
        slippage_risk = min(p.slippage_bps / 100, 20)
        amount_risk = min(p.amount * 5, 30)
        return ImpactEstimate(
            amount_sol=p.amount if resolve_mint(p.from_mint) == SOL_MINT else 0.0,
            mint=p.from_mint,
            risk_score=risk_score(20 + slippage_risk + amount_risk),
            slippage_bps=p.slippage_bps,
        )

    async def _build(self, agent, ledger: LedgerAdapter, params: SwapParams) -> UnsignedTransaction:
        from_mint = resolve_mint(params.from_mint)
        to_mint = resolve_mint(params.to_mint)
        decimals = 9 if from_mint == SOL_MINT else 6
        input_amount = math.floor(params.amount * (10**decimals))

        serialized, out_amount = await ledger.fetch_swap_transaction(
            input_mint=from_mint,
            output_mint=to_mint,
            amount=input_amount,
            slippage_bps=params.slippage_bps,
            user_public_key=agent.public_key,
        )
        return UnsignedTransaction(
            payer=agent.public_key,
            versioned=True,
            serialized=serialized,
            expected_output_amount=float(out_amount) if out_amount else None,
            expected_output_mint=to_mint,
        )

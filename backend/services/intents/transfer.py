from __future__ import annotations

import math

from pydantic import Field

from models.policy import ImpactEstimate
from services.intents.base import (
    LAMPORTS_PER_SOL,
    SOL_SYMBOL,
    IntentHandler,
    IntentParams,
    pubkey_error,
    risk_score,
)
from services.ledger import instructions as ix
from services.ledger.base import LedgerAdapter, UnsignedTransaction


class TransferParams(IntentParams):
    to: str = Field(min_length=32)
    amount: float = Field(gt=0)
    mint: str = SOL_SYMBOL
    decimals: int = Field(default=6, ge=0, le=18)


class TransferIntentHandler(IntentHandler[TransferParams]):
    """Native SOL or SPL token transfer to another wallet."""

    intent_type = "transfer"
    params_model = TransferParams

    def semantic_errors(self, params: TransferParams) -> list[str]:
        errors = [pubkey_error("to", params.to, "recipient address")]
        if params.mint != SOL_SYMBOL:
            errors.append(pubkey_error("mint", params.mint, "mint address"))
        return [e for e in errors if e]

    def estimate_impact(self, params) -> ImpactEstimate:
        p = self.parse(params)
        amount_risk = min(p.amount * 10, 30)
        return ImpactEstimate(
            amount_sol=p.amount if p.mint == SOL_SYMBOL else 0.0,
            mint=p.mint,
            risk_score=risk_score(5 + amount_risk),
        )

    async def _build(self, agent, ledger: LedgerAdapter, params: TransferParams) -> UnsignedTransaction:
        owner = agent.public_key
        instructions = []

        if params.mint == SOL_SYMBOL:
            lamports = math.floor(params.amount * LAMPORTS_PER_SOL)
            instructions.append(ix.system_transfer(owner, params.to, lamports))
        else:
            source_ata = ix.associated_token_address(owner, params.mint)
            dest_ata = ix.associated_token_address(params.to, params.mint)
            if not await ledger.account_exists(dest_ata):
                instructions.append(ix.create_associated_token_account(owner, dest_ata, params.to, params.mint))
            raw_amount = math.floor(params.amount * (10**params.decimals))
            instructions.append(ix.token_transfer(source_ata, dest_ata, owner, raw_amount))

        return UnsignedTransaction(
            payer=owner,
            instructions=instructions,
            recent_blockhash=await ledger.latest_blockhash(),
        )

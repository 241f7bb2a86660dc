from __future__ import annotations

import math

from pydantic import Field
from solders.keypair import Keypair

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


class StakeParams(IntentParams):
    amount: float = Field(gt=0)
    vote_account: str = Field(alias="voteAccount", min_length=32)


class StakeIntentHandler(IntentHandler[StakeParams]):
    """Create a fresh stake account and delegate it to a validator."""

    intent_type = "stake"
    params_model = StakeParams

    def semantic_errors(self, params: StakeParams) -> list[str]:
        error = pubkey_error("voteAccount", params.vote_account, "vote account address")
        return [error] if error else []

    def estimate_impact(self, params) -> ImpactEstimate:
        p = self.parse(params)
        return ImpactEstimate(
            amount_sol=p.amount,
            mint=SOL_SYMBOL,
            risk_score=risk_score(15 + min(p.amount * 3, 20)),
        )

    async def _build(self, agent, ledger: LedgerAdapter, params: StakeParams) -> UnsignedTransaction:
        owner = agent.public_key
        stake_account = Keypair()
        stake_address = str(stake_account.pubkey())
        lamports = math.floor(params.amount * LAMPORTS_PER_SOL)

        return UnsignedTransaction(
            payer=owner,
            instructions=[
                ix.system_create_account(
                    owner, stake_address, lamports, ix.STAKE_ACCOUNT_SPACE, ix.STAKE_PROGRAM_ID
                ),
                ix.stake_initialize(stake_address, staker=owner, withdrawer=owner, custodian=owner),
                ix.stake_delegate(stake_address, params.vote_account, owner),
            ],
            recent_blockhash=await ledger.latest_blockhash(),
            extra_signers=[bytes(stake_account)],
        )

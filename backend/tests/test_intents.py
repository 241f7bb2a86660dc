import struct
import sys
from pathlib import Path
from types import SimpleNamespace

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import pytest
from solders.keypair import Keypair

from services.errors import BuildError, NotFoundError, ValidationError
from services.intents.registry import intent_registry
from services.ledger import instructions as ix
from services.oracle.feeds import USDC_MINT
from support import BLOCKHASH, RECIPIENT, FakeLedger

AGENT = SimpleNamespace(id="agent-1", public_key=str(Keypair().pubkey()))


def test_unknown_intent_type_lists_known_types():
    with pytest.raises(NotFoundError) as excinfo:
        intent_registry.resolve("teleport")
    assert excinfo.value.message == (
        'unknown intent type "teleport". known types: transfer, swap, stake, lend, flash, cpi'
    )


def test_resolve_returns_fresh_handler_each_time():
    assert intent_registry.resolve("transfer") is not intent_registry.resolve("transfer")


def test_transfer_rejects_bad_recipient_and_coerced_amount():
    handler = intent_registry.resolve("transfer")

    with pytest.raises(ValidationError) as excinfo:
        handler.validate({"to": "x" * 40, "amount": 1})
    assert excinfo.value.errors == [f"to: invalid recipient address: {'x' * 40}"]

    with pytest.raises(ValidationError) as excinfo:
        handler.validate({"to": RECIPIENT, "amount": "1"})
    assert excinfo.value.message.startswith("invalid transfer params: amount")

    with pytest.raises(ValidationError):
        handler.validate({"to": RECIPIENT, "amount": 0})

    with pytest.raises(ValidationError, match="params must be an object"):
        handler.validate(["not", "a", "dict"])


def test_impact_estimates():
    transfer = intent_registry.resolve("transfer").estimate_impact({"to": RECIPIENT, "amount": 0.5})
    assert (transfer.amount_sol, transfer.mint, transfer.risk_score) == (0.5, "SOL", 10)

    capped = intent_registry.resolve("transfer").estimate_impact({"to": RECIPIENT, "amount": 10})
    assert capped.risk_score == 35

    token = intent_registry.resolve("transfer").estimate_impact({"to": RECIPIENT, "amount": 5, "mint": USDC_MINT})
    assert token.amount_sol == 0.0
    assert token.mint == USDC_MINT

    swap = intent_registry.resolve("swap").estimate_impact(
        {"fromMint": "SOL", "toMint": "USDC", "amount": 1, "slippageBps": 100}
    )
    assert (swap.amount_sol, swap.risk_score, swap.slippage_bps) == (1, 26, 100)

    stake = intent_registry.resolve("stake").estimate_impact({"amount": 2, "voteAccount": RECIPIENT})
    assert (stake.amount_sol, stake.risk_score) == (2, 21)

    lend = intent_registry.resolve("lend").estimate_impact({"protocol": "marginfi", "mint": USDC_MINT, "amount": 3})
    assert (lend.amount_sol, lend.risk_score) == (0.0, 15)

    cpi = intent_registry.resolve("cpi").estimate_impact({"programId": RECIPIENT, "data": "AQ==", "accounts": []})
    assert cpi.risk_score == 90

    instruction = {"programId": RECIPIENT, "data": "AQ==", "accounts": []}
    flash = intent_registry.resolve("flash").estimate_impact(
        {"mint": USDC_MINT, "amount": 100, "instructions": [instruction, instruction]}
    )
    assert flash.risk_score == 74


def test_risk_score_rounds_halves_up():
    transfer = intent_registry.resolve("transfer").estimate_impact({"to": RECIPIENT, "amount": 0.15})
    assert transfer.risk_score == 7

    stake = intent_registry.resolve("stake").estimate_impact({"amount": 0.5, "voteAccount": RECIPIENT})
    assert stake.risk_score == 17


def test_lend_protocol_is_restricted():
    with pytest.raises(ValidationError):
        intent_registry.resolve("lend").validate({"protocol": "aave", "mint": USDC_MINT, "amount": 1})


def test_raw_instruction_errors_are_indexed():
    handler = intent_registry.resolve("flash")
    with pytest.raises(ValidationError) as excinfo:
        handler.validate(
            {
                "mint": USDC_MINT,
                "amount": 1,
                "instructions": [
                    {"programId": RECIPIENT, "data": "AQ==", "accounts": []},
                    {"programId": RECIPIENT, "data": "not base64!", "accounts": []},
                ],
            }
        )
    assert excinfo.value.errors == ["instructions.1.data: must be base64"]


@pytest.mark.asyncio
async def test_sol_transfer_builds_system_instruction():
    handler = intent_registry.resolve("transfer")
    handler.validate({"to": RECIPIENT, "amount": 0.25})
    tx = await handler.build_transaction(AGENT, FakeLedger())

    assert tx.payer == AGENT.public_key
    assert tx.recent_blockhash == BLOCKHASH
    [instruction] = tx.instructions
    assert instruction.program_id == ix.SYSTEM_PROGRAM_ID
    assert instruction.data == struct.pack("<IQ", 2, 250_000_000)
    assert [a.pubkey for a in instruction.accounts] == [AGENT.public_key, RECIPIENT]


@pytest.mark.asyncio
async def test_token_transfer_uses_associated_accounts():
    class MissingAccountLedger(FakeLedger):
        async def account_exists(self, address):
            return False

    handler = intent_registry.resolve("transfer")
    handler.validate({"to": RECIPIENT, "amount": 1.5, "mint": USDC_MINT})
    tx = await handler.build_transaction(AGENT, MissingAccountLedger())

    create, transfer = tx.instructions
    assert create.program_id == ix.ASSOCIATED_TOKEN_PROGRAM_ID
    assert transfer.program_id == ix.TOKEN_PROGRAM_ID
    assert transfer.data == struct.pack("<BQ", 3, 1_500_000)
    assert transfer.accounts[1].pubkey == ix.associated_token_address(RECIPIENT, USDC_MINT)


@pytest.mark.asyncio
async def test_swap_carries_prebuilt_route():
    handler = intent_registry.resolve("swap")
    handler.validate({"fromMint": "SOL", "toMint": "USDC", "amount": 1})
    tx = await handler.build_transaction(AGENT, FakeLedger(swap_out_amount=150_000_000))

    assert tx.versioned is True
    assert tx.serialized == b"\x01swap"
    assert tx.expected_output_amount == 150_000_000
    assert tx.expected_output_mint == USDC_MINT


@pytest.mark.asyncio
async def test_build_before_validate_and_adapter_failures():
    with pytest.raises(BuildError, match="before validate"):
        await intent_registry.resolve("lend").build_transaction(AGENT, FakeLedger())

    class BrokenLedger(FakeLedger):
        async def latest_blockhash(self):
            raise RuntimeError("rpc unavailable")

    handler = intent_registry.resolve("lend")
    handler.validate({"protocol": "solend", "mint": USDC_MINT, "amount": 1})
    with pytest.raises(BuildError, match="transaction build failed: rpc unavailable"):
        await handler.build_transaction(AGENT, BrokenLedger())

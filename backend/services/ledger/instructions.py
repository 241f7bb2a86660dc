"""Raw instruction encoders for the native programs intent handlers use."""

from __future__ import annotations

import struct

from solders.pubkey import Pubkey

from services.ledger.base import AccountSpec, InstructionSpec

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
MEMO_PROGRAM_ID = "MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr"
STAKE_PROGRAM_ID = "Stake11111111111111111111111111111111111111"
STAKE_CONFIG_ID = "StakeConfig11111111111111111111111111111111"
SYSVAR_RENT_ID = "SysvarRent111111111111111111111111111111111"
SYSVAR_CLOCK_ID = "SysvarC1ock11111111111111111111111111111111"
SYSVAR_STAKE_HISTORY_ID = "SysvarStakeHistory1111111111111111111111111"

STAKE_ACCOUNT_SPACE = 200

_SYSTEM_CREATE_ACCOUNT = 0
_SYSTEM_TRANSFER = 2
_TOKEN_TRANSFER = 3
_STAKE_INITIALIZE = 0
_STAKE_DELEGATE = 2


def is_valid_pubkey(value: str) -> bool:
    try:
        Pubkey.from_string(value)
    except (ValueError, TypeError):
        return False
    return True


def _pubkey_bytes(value: str) -> bytes:
    return bytes(Pubkey.from_string(value))


def associated_token_address(owner: str, mint: str) -> str:
    address, _bump = Pubkey.find_program_address(
        [_pubkey_bytes(owner), _pubkey_bytes(TOKEN_PROGRAM_ID), _pubkey_bytes(mint)],
        Pubkey.from_string(ASSOCIATED_TOKEN_PROGRAM_ID),
    )
    return str(address)


def system_transfer(source: str, destination: str, lamports: int) -> InstructionSpec:
    return InstructionSpec(
        program_id=SYSTEM_PROGRAM_ID,
        accounts=[
            AccountSpec(source, is_signer=True, is_writable=True),
            AccountSpec(destination, is_writable=True),
        ],
        data=struct.pack("<IQ", _SYSTEM_TRANSFER, lamports),
    )


def system_create_account(payer: str, new_account: str, lamports: int, space: int, owner: str) -> InstructionSpec:
    return InstructionSpec(
        program_id=SYSTEM_PROGRAM_ID,
        accounts=[
            AccountSpec(payer, is_signer=True, is_writable=True),
            AccountSpec(new_account, is_signer=True, is_writable=True),
        ],
        data=struct.pack("<IQQ", _SYSTEM_CREATE_ACCOUNT, lamports, space) + _pubkey_bytes(owner),
    )


def create_associated_token_account(payer: str, ata: str, owner: str, mint: str) -> InstructionSpec:
    return InstructionSpec(
        program_id=ASSOCIATED_TOKEN_PROGRAM_ID,
        accounts=[
            AccountSpec(payer, is_signer=True, is_writable=True),
            AccountSpec(ata, is_writable=True),
            AccountSpec(owner),
            AccountSpec(mint),
            AccountSpec(SYSTEM_PROGRAM_ID),
            AccountSpec(TOKEN_PROGRAM_ID),
        ],
        data=b"",
    )


def token_transfer(source: str, destination: str, owner: str, amount: int) -> InstructionSpec:
    return InstructionSpec(
        program_id=TOKEN_PROGRAM_ID,
        accounts=[
            AccountSpec(source, is_writable=True),
            AccountSpec(destination, is_writable=True),
            AccountSpec(owner, is_signer=True),
        ],
        data=struct.pack("<BQ", _TOKEN_TRANSFER, amount),
    )


def memo(signer: str, text: str) -> InstructionSpec:
    return InstructionSpec(
        program_id=MEMO_PROGRAM_ID,
        accounts=[AccountSpec(signer, is_signer=True)],
        data=text.encode("utf-8"),
    )


def stake_initialize(stake_account: str, staker: str, withdrawer: str, custodian: str) -> InstructionSpec:
    # Lockup: unix_timestamp=0, epoch=0, custodian
    data = (
        struct.pack("<I", _STAKE_INITIALIZE)
        + _pubkey_bytes(staker)
        + _pubkey_bytes(withdrawer)
        + struct.pack("<qQ", 0, 0)
        + _pubkey_bytes(custodian)
    )
    return InstructionSpec(
        program_id=STAKE_PROGRAM_ID,
        accounts=[
            AccountSpec(stake_account, is_writable=True),
            AccountSpec(SYSVAR_RENT_ID),
        ],
        data=data,
    )


def stake_delegate(stake_account: str, vote_account: str, authority: str) -> InstructionSpec:
    return InstructionSpec(
        program_id=STAKE_PROGRAM_ID,
        accounts=[
            AccountSpec(stake_account, is_writable=True),
            AccountSpec(vote_account),
            AccountSpec(SYSVAR_CLOCK_ID),
            AccountSpec(SYSVAR_STAKE_HISTORY_ID),
            AccountSpec(STAKE_CONFIG_ID),
            AccountSpec(authority, is_signer=True),
        ],
        data=struct.pack("<I", _STAKE_DELEGATE),
    )

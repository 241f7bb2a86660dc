"""Solana JSON-RPC ledger adapter.

Read calls (blockhash, balance, account info, signature status, quotes) go
through ``RetryableClient``. ``sendTransaction`` is posted exactly once.
"""

from __future__ import annotations

import asyncio
import base64
import itertools
from typing import Any, Optional

import httpx
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message, MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction, VersionedTransaction

from config import settings
from services.ledger.base import (
    DryRunResult,
    LedgerAdapter,
    LedgerError,
    Submission,
    TokenBalance,
    UnsignedTransaction,
)
from utils.logger import ledger_logger as logger
from utils.retry import RetryableClient, RetryConfig

_CONFIRMED_STATES = {"confirmed", "finalized"}


def _to_instruction(spec) -> Instruction:
    return Instruction(
        Pubkey.from_string(spec.program_id),
        bytes(spec.data),
        [AccountMeta(Pubkey.from_string(a.pubkey), a.is_signer, a.is_writable) for a in spec.accounts],
    )


def _parse_token_balances(raw: Optional[list[dict]]) -> list[TokenBalance]:
    balances = []
    for item in raw or []:
        try:
            amount = int((item.get("uiTokenAmount") or {}).get("amount") or 0)
            balances.append(
                TokenBalance(
                    account_index=int(item["accountIndex"]),
                    mint=str(item["mint"]),
                    amount=amount,
                    owner=item.get("owner"),
                )
            )
        except (KeyError, TypeError, ValueError):
            logger.debug("Skipping malformed token balance", item=item)
    return balances


class SolanaRpcLedger(LedgerAdapter):
    def __init__(
        self,
        rpc_url: Optional[str] = None,
        commitment: Optional[str] = None,
        jupiter_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        retry_config: Optional[RetryConfig] = None,
        confirm_poll_interval: float = 1.0,
    ):
        self.rpc_url = rpc_url or settings.RPC_URL
        self.commitment = commitment or settings.RPC_COMMITMENT
        self.jupiter_url = jupiter_url or settings.JUPITER_API_URL
        self.confirm_poll_interval = confirm_poll_interval
        self._client = client
        self._owns_client = client is None
        self._retry_config = retry_config or RetryConfig(
            max_attempts=settings.MAX_RETRY_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY,
        )
        self._ids = itertools.count(1)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=settings.LEDGER_READ_TIMEOUT_SECONDS,
                headers={"Content-Type": "application/json", "User-Agent": "aegis-node/1.0"},
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _rpc(self, method: str, params: list, *, retry: bool = True, timeout: Optional[float] = None) -> Any:
        client = await self._get_client()
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        request_timeout = timeout or settings.LEDGER_READ_TIMEOUT_SECONDS
        try:
            if retry:
                response = await RetryableClient(client, self._retry_config).post(
                    self.rpc_url, json=payload, timeout=request_timeout
                )
            else:
                response = await client.post(self.rpc_url, json=payload, timeout=request_timeout)
                response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise LedgerError(f"{method} failed: {exc}") from exc

        if body.get("error"):
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise LedgerError(f"{method} failed: {message}")
        return body.get("result")

    # ------------------------------------------------------------------ #
    #  Reads
    # ------------------------------------------------------------------ #

    async def latest_blockhash(self) -> str:
        result = await self._rpc("getLatestBlockhash", [{"commitment": self.commitment}])
        return result["value"]["blockhash"]

    async def get_balance(self, address: str) -> int:
        result = await self._rpc("getBalance", [address, {"commitment": self.commitment}])
        return int(result["value"])

    async def account_exists(self, address: str) -> bool:
        result = await self._rpc(
            "getAccountInfo", [address, {"encoding": "base64", "commitment": self.commitment}]
        )
        return bool(result and result.get("value"))

    async def fetch_swap_transaction(
        self,
        *,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
        user_public_key: str,
    ) -> tuple[bytes, Optional[int]]:
        client = await self._get_client()
        retrying = RetryableClient(client, self._retry_config)
        try:
            quote = (
                await retrying.get(
                    f"{self.jupiter_url}/quote",
                    params={
                        "inputMint": input_mint,
                        "outputMint": output_mint,
                        "amount": str(amount),
                        "slippageBps": str(slippage_bps),
                    },
                )
            ).json()
            # The swap endpoint only builds a transaction; submission happens elsewhere.
            swap_response = await client.post(
                f"{self.jupiter_url}/swap",
                json={
                    "quoteResponse": quote,
                    "userPublicKey": user_public_key,
                    "wrapAndUnwrapSol": True,
                    "dynamicComputeUnitLimit": True,
                    "prioritizationFeeLamports": "auto",
                },
            )
            swap_response.raise_for_status()
            swap = swap_response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise LedgerError(f"swap route unavailable: {exc}") from exc

        encoded = swap.get("swapTransaction")
        if not encoded:
            raise LedgerError("swap aggregator returned no transaction")
        out_amount = quote.get("outAmount")
        return base64.b64decode(encoded), int(out_amount) if out_amount is not None else None

    # ------------------------------------------------------------------ #
    #  Compilation
    # ------------------------------------------------------------------ #

    async def _serialize(self, tx: UnsignedTransaction, signers: Optional[list[Keypair]] = None) -> bytes:
        if tx.serialized is not None:
            prebuilt = VersionedTransaction.from_bytes(tx.serialized)
            if signers:
                return bytes(VersionedTransaction(prebuilt.message, signers))
            return bytes(prebuilt)

        blockhash = Hash.from_string(tx.recent_blockhash or await self.latest_blockhash())
        payer = Pubkey.from_string(tx.payer)
        instructions = [_to_instruction(spec) for spec in tx.instructions]

        if tx.versioned:
            message_v0 = MessageV0.try_compile(payer, instructions, [], blockhash)
            if signers:
                return bytes(VersionedTransaction(message_v0, signers))
            placeholders = [Signature.default()] * message_v0.header.num_required_signatures
            return bytes(VersionedTransaction.populate(message_v0, placeholders))

        message = Message.new_with_blockhash(instructions, payer, blockhash)
        if signers:
            return bytes(Transaction(signers, message, blockhash))
        return bytes(Transaction.new_unsigned(message))

    # ------------------------------------------------------------------ #
    #  Simulation / submission
    # ------------------------------------------------------------------ #

    async def simulate(self, tx: UnsignedTransaction, addresses: list[str]) -> DryRunResult:
        encoded = base64.b64encode(await self._serialize(tx)).decode("ascii")
        result = await self._rpc(
            "simulateTransaction",
            [
                encoded,
                {
                    "encoding": "base64",
                    "sigVerify": False,
                    "replaceRecentBlockhash": True,
                    "commitment": self.commitment,
                    "accounts": {"encoding": "base64", "addresses": addresses},
                },
            ],
            timeout=settings.LEDGER_SIMULATE_TIMEOUT_SECONDS,
        )
        value = (result or {}).get("value") or {}
        accounts = value.get("accounts") or []
        return DryRunResult(
            err=value.get("err"),
            logs=list(value.get("logs") or []),
            units_consumed=int(value.get("unitsConsumed") or 0),
            pre_token_balances=_parse_token_balances(value.get("preTokenBalances")),
            post_token_balances=_parse_token_balances(value.get("postTokenBalances")),
            account_lamports=[
                int(acc["lamports"]) if isinstance(acc, dict) and acc.get("lamports") is not None else None
                for acc in accounts
            ],
        )

    async def submit(self, tx: UnsignedTransaction, signer: Keypair) -> Submission:
        signers = [signer] + [Keypair.from_bytes(secret) for secret in tx.extra_signers]
        encoded = base64.b64encode(await self._serialize(tx, signers)).decode("ascii")
        signature = await self._rpc(
            "sendTransaction",
            [
                encoded,
                {
                    "encoding": "base64",
                    "skipPreflight": False,
                    "preflightCommitment": self.commitment,
                    "maxRetries": 0,
                },
            ],
            retry=False,
            timeout=settings.LEDGER_SUBMIT_TIMEOUT_SECONDS,
        )
        logger.info("Transaction sent", signature=signature, payer=tx.payer)
        slot = await self._await_confirmation(signature)
        return Submission(signature=signature, slot=slot)

    async def _await_confirmation(self, signature: str) -> int:
        # Bounded by the caller's submit timeout; an unconfirmed signature is a failure.
        while True:
            result = await self._rpc(
                "getSignatureStatuses", [[signature], {"searchTransactionHistory": True}]
            )
            status = ((result or {}).get("value") or [None])[0]
            if status:
                if status.get("err"):
                    raise LedgerError(f"transaction {signature} failed on-chain: {status['err']}")
                if status.get("confirmationStatus") in _CONFIRMED_STATES:
                    return int(status.get("slot") or 0)
            await asyncio.sleep(self.confirm_poll_interval)

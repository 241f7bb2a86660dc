"""Test doubles and builders shared across the test modules."""

import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from api.deps import build_services
from models.database import Base
from services.keystore import EncryptedKeystore
from services.ledger.base import DryRunResult, LedgerAdapter, Submission, TokenBalance
from services.oracle.aggregator import PriceOracle
from services.webhooks import WebhookNotifier
from utils.clock import FixedClock

TEST_SECRETS_KEY = "test-secrets-key"
LAMPORTS = 1_000_000_000
RECIPIENT = "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"
BLOCKHASH = "4uQeVj5tqViQh7yWWGStvkEG1Zmhx6uasJtWCJziofM"
SIGNATURE = "5VERv8NMvzbJMEkV8xnrLkEaWRtSz9CosKDYjCJjBRnbJLgp8uirBgmQpjKhoR4tjF3ZpRzrFmBV6UjKdiSZkQUW"


async def build_session_factory(tmp_path: Path, name: str = "aegis_test.db"):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / name}")
    session_factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, session_factory


def fixed_clock(start: Optional[datetime] = None) -> FixedClock:
    return FixedClock(start or datetime(2025, 3, 14, 12, 0, 0))


class FakeLedger(LedgerAdapter):
    """In-memory ledger: fixed balance, scripted dry-run, recorded submissions."""

    def __init__(
        self,
        balance_lamports: int = 2 * LAMPORTS,
        dry_run: Optional[DryRunResult] = None,
        submit_error: Optional[Exception] = None,
        swap_out_amount: int = 1_000_000,
    ):
        self.balance_lamports = balance_lamports
        self.dry_run = dry_run
        self.submit_error = submit_error
        self.swap_out_amount = swap_out_amount
        self.simulated = []
        self.submitted = []
        self.closed = False

    async def latest_blockhash(self) -> str:
        return BLOCKHASH

    async def get_balance(self, address: str) -> int:
        return self.balance_lamports

    async def account_exists(self, address: str) -> bool:
        return True

    async def fetch_swap_transaction(self, *, input_mint, output_mint, amount, slippage_bps, user_public_key):
        return b"\x01swap", self.swap_out_amount

    async def simulate(self, tx, addresses):
        self.simulated.append((tx, list(addresses)))
        if self.dry_run is not None:
            return self.dry_run
        return DryRunResult(units_consumed=1_000, account_lamports=[self.balance_lamports])

    async def submit(self, tx, signer) -> Submission:
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append((tx, signer))
        return Submission(signature=SIGNATURE, slot=4242)

    async def close(self) -> None:
        self.closed = True


class FakeFeed:
    def __init__(self, name: str, prices: Optional[dict] = None, error: Optional[Exception] = None):
        self.name = name
        self.prices = prices or {}
        self.error = error
        self.calls = 0

    async def get_price_usd(self, asset: str) -> float:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.prices[asset]

    async def close(self) -> None:
        return None


def sol_oracle(price: float = 100.0, clock=None) -> PriceOracle:
    from services.oracle.feeds import SOL_MINT

    return PriceOracle(
        primary=FakeFeed("pyth", {SOL_MINT: price}),
        fallback=FakeFeed("coingecko", {SOL_MINT: price}),
        clock=clock or fixed_clock(),
    )


class WebhookRecorder:
    """Captures webhook POSTs through an httpx mock transport."""

    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((str(request.url), json.loads(request.content)))
        return httpx.Response(self.status_code, json={"ok": True})

    def notifier(self) -> WebhookNotifier:
        return WebhookNotifier(client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler)))


def make_keystore() -> EncryptedKeystore:
    return EncryptedKeystore(secret_key=TEST_SECRETS_KEY)


def make_services(session_factory, clock, ledger=None, oracle=None, notifier=None, submit_timeout_seconds=None):
    return build_services(
        session_factory=session_factory,
        ledger=ledger or FakeLedger(),
        keystore=make_keystore(),
        oracle=oracle or sol_oracle(clock=clock),
        notifier=notifier or WebhookRecorder().notifier(),
        clock=clock,
        bcrypt_rounds=4,
        submit_timeout_seconds=submit_timeout_seconds,
    )


def token_dry_run(agent_address: str, *, pre: int, post: int, mint: str, lamports: int = 2 * LAMPORTS):
    return DryRunResult(
        units_consumed=5_000,
        pre_token_balances=[TokenBalance(account_index=1, mint=mint, amount=pre, owner=agent_address)],
        post_token_balances=[TokenBalance(account_index=1, mint=mint, amount=post, owner=agent_address)],
        account_lamports=[lamports],
    )

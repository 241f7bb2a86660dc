"""Shared fixtures for the agent wallet service tests."""

import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import pytest

from models.policy import AgentPolicy, USDPolicy
from support import FakeLedger, fixed_clock, make_keystore


@pytest.fixture
def clock():
    return fixed_clock()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def keystore():
    return make_keystore()


@pytest.fixture
def default_policy():
    return AgentPolicy()


@pytest.fixture
def usd_policy():
    return USDPolicy(
        max_transaction_usd=500,
        max_daily_exposure_usd=1000,
        max_portfolio_exposure_percentage=50,
        max_drawdown_usd=200,
    )

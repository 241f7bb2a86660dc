import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import pytest

from models.policy import USDPolicy
from services.errors import USDPolicyError
from services.policy.usd_engine import USDPolicyEngine


def _codes(violations):
    return [v.code for v in violations if v is not None]


def test_clean_transaction_passes(usd_policy):
    engine = USDPolicyEngine("agent-1", usd_policy)
    result = engine.evaluate(100, portfolio_usd=1000, spent_today_usd=0, peak_portfolio_usd=1000)
    assert _codes(result) == []


def test_transaction_cap(usd_policy):
    violation = USDPolicyEngine("agent-1", usd_policy).check_tx_usd(600)
    assert violation.code == "TX_USD_EXCEEDS_CAP"
    assert violation.message == "transaction value $600.00 exceeds maxTransactionUSD $500.00"


def test_daily_exposure_includes_prior_spend(usd_policy):
    engine = USDPolicyEngine("agent-1", usd_policy)
    assert engine.check_daily_usd(200, 900).code == "DAILY_USD_LIMIT_EXCEEDED"
    assert engine.check_daily_usd(100, 900) is None


def test_portfolio_exposure(usd_policy):
    engine = USDPolicyEngine("agent-1", usd_policy)
    violation = engine.check_portfolio_exposure(300, 400)
    assert violation.code == "PORTFOLIO_EXPOSURE_TOO_HIGH"
    assert violation.message == "transaction is 75.0% of portfolio, exceeds maxPortfolioExposurePercentage 50%"


def test_portfolio_exposure_skipped_for_empty_portfolio(usd_policy):
    assert USDPolicyEngine("agent-1", usd_policy).check_portfolio_exposure(300, 0) is None


def test_drawdown_against_peak(usd_policy):
    engine = USDPolicyEngine("agent-1", usd_policy)
    assert engine.check_drawdown(700, 1000).code == "DRAWDOWN_LIMIT_EXCEEDED"
    assert engine.check_drawdown(900, 1000) is None


def test_drawdown_skipped_without_recorded_peak(usd_policy):
    assert USDPolicyEngine("agent-1", usd_policy).check_drawdown(10, 0) is None


def test_unset_limits_skip_their_checks():
    engine = USDPolicyEngine("agent-1", USDPolicy())
    result = engine.evaluate(1e9, portfolio_usd=1, spent_today_usd=1e9, peak_portfolio_usd=1e12)
    assert _codes(result) == []


def test_enforce_reports_every_usd_violation(usd_policy):
    engine = USDPolicyEngine("agent-1", usd_policy)
    with pytest.raises(USDPolicyError) as excinfo:
        engine.enforce(engine.evaluate(600, portfolio_usd=700, spent_today_usd=500, peak_portfolio_usd=1000))

    assert excinfo.value.to_dict()["error"] == "usd policy violation"
    assert [v.code for v in excinfo.value.violations] == [
        "TX_USD_EXCEEDS_CAP",
        "DAILY_USD_LIMIT_EXCEEDED",
        "PORTFOLIO_EXPOSURE_TOO_HIGH",
        "DRAWDOWN_LIMIT_EXCEEDED",
    ]

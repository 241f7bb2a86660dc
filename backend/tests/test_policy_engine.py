import sys
from datetime import timedelta
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import pytest

from models.policy import AgentPolicy, ImpactEstimate
from services.errors import PolicyError
from services.policy.engine import PolicyEngine, format_number


def _codes(violations):
    return [v.code for v in violations if v is not None]


def _evaluate(engine, intent_type="transfer", *, amount=0.5, mint="SOL", risk=10, slippage=None,
              spent=0.0, last_activity=None):
    impact = ImpactEstimate(amount_sol=amount, mint=mint, risk_score=risk, slippage_bps=slippage)
    return engine.evaluate(intent_type, impact, spent_today_sol=spent, last_activity_at=last_activity)


def test_format_number_drops_integral_fraction():
    assert format_number(1.0) == "1"
    assert format_number(1.5) == "1.5"
    assert format_number(5) == "5"


def test_default_policy_accepts_small_transfer(clock):
    engine = PolicyEngine("agent-1", AgentPolicy(), clock=clock)
    assert _codes(_evaluate(engine)) == []


def test_amount_over_cap_is_rejected_with_message(clock):
    engine = PolicyEngine("agent-1", AgentPolicy(max_tx_amount_sol=1), clock=clock)
    violations = [v for v in _evaluate(engine, amount=1.5) if v]

    assert _codes(violations) == ["AMOUNT_EXCEEDS_TX_CAP"]
    assert violations[0].message == "amount 1.5 SOL exceeds maxTxAmountSOL 1"


def test_daily_limit_counts_prior_spend(clock):
    engine = PolicyEngine("agent-1", AgentPolicy(daily_spend_limit_sol=5), clock=clock)
    violations = [v for v in _evaluate(engine, amount=1.0, spent=4.5) if v]

    assert _codes(violations) == ["DAILY_SPEND_LIMIT_EXCEEDED"]
    assert violations[0].message == "projected daily spend 5.5000 SOL exceeds limit 5 SOL"


def test_every_failing_dimension_is_reported(clock):
    engine = PolicyEngine("agent-1", AgentPolicy(daily_spend_limit_sol=1), clock=clock)
    codes = _codes(_evaluate(engine, "stake", amount=2, mint="BONK"))

    assert codes == [
        "INTENT_NOT_ALLOWED",
        "MINT_NOT_ALLOWED",
        "AMOUNT_EXCEEDS_TX_CAP",
        "DAILY_SPEND_LIMIT_EXCEEDED",
    ]
    assert len(set(codes)) == len(codes)


def test_slippage_checked_only_when_impact_carries_one(clock):
    engine = PolicyEngine("agent-1", AgentPolicy(max_slippage_bps=100), clock=clock)

    assert _codes(_evaluate(engine, "swap")) == []
    assert _codes(_evaluate(engine, "swap", slippage=150)) == ["SLIPPAGE_TOO_HIGH"]
    assert _codes(_evaluate(engine, "swap", slippage=100)) == []


def test_cooldown_boundary_follows_injected_clock(clock):
    engine = PolicyEngine("agent-1", AgentPolicy(cooldown_ms=60_000), clock=clock)
    last = clock.now() - timedelta(seconds=10)

    violations = [v for v in _evaluate(engine, last_activity=last) if v]
    assert _codes(violations) == ["COOLDOWN_ACTIVE"]
    assert violations[0].message == "agent is in cooldown, 50s remaining"

    clock.advance(seconds=50)
    assert _codes(_evaluate(engine, last_activity=last)) == []


def test_cooldown_ignored_without_prior_activity(clock):
    engine = PolicyEngine("agent-1", AgentPolicy(cooldown_ms=60_000), clock=clock)
    assert _codes(_evaluate(engine, last_activity=None)) == []


def test_risk_score_cap(clock):
    engine = PolicyEngine("agent-1", AgentPolicy(max_risk_score=50), clock=clock)
    assert _codes(_evaluate(engine, risk=90)) == ["RISK_SCORE_TOO_HIGH"]
    assert _codes(_evaluate(engine, risk=50)) == []


def test_enforce_raises_with_all_violations(clock):
    engine = PolicyEngine("agent-1", AgentPolicy(), clock=clock)
    with pytest.raises(PolicyError) as excinfo:
        engine.enforce(_evaluate(engine, "cpi", amount=3))

    body = excinfo.value.to_dict()
    assert excinfo.value.status_code == 403
    assert body["error"] == "policy violation"
    assert [v["code"] for v in body["violations"]] == ["INTENT_NOT_ALLOWED", "AMOUNT_EXCEEDS_TX_CAP"]


def test_enforce_passes_when_clean(clock):
    engine = PolicyEngine("agent-1", AgentPolicy(), clock=clock)
    engine.enforce([None, None])

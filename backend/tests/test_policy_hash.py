import hashlib
import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from models.policy import AgentPolicy, Intent
from services.policy.hash import HASH_LENGTH, canonical_json, hash_intent, hash_policy


def test_policy_hash_is_sixteen_hex_chars():
    digest = hash_policy(AgentPolicy())
    assert len(digest) == HASH_LENGTH == 16
    int(digest, 16)


def test_policy_hash_ignores_key_order_at_every_depth():
    a = {"maxTxAmountSOL": 1, "nested": {"y": 2, "x": [{"b": 1, "a": 2}]}}
    b = {"nested": {"x": [{"a": 2, "b": 1}], "y": 2}, "maxTxAmountSOL": 1}
    assert hash_policy(a) == hash_policy(b)


def test_policy_model_and_document_hash_identically():
    policy = AgentPolicy(max_tx_amount_sol=2.5)
    assert hash_policy(policy) == hash_policy(policy.to_document())


def test_integral_floats_hash_like_integers():
    assert hash_policy({"maxTxAmountSOL": 1.0}) == hash_policy({"maxTxAmountSOL": 1})
    assert canonical_json({"b": 2.0, "a": 0.5}) == '{"a":0.5,"b":2}'


def test_policy_hash_changes_with_content():
    assert hash_policy(AgentPolicy()) != hash_policy(AgentPolicy(max_tx_amount_sol=2))


def test_intent_hash_matches_canonical_envelope():
    expected = hashlib.sha256(b'{"type":"transfer","params":{"amount":1,"to":"abc"}}').hexdigest()[:16]
    assert hash_intent({"type": "transfer", "params": {"to": "abc", "amount": 1.0}}) == expected


def test_intent_hash_ignores_param_order():
    left = Intent(type="swap", params={"fromMint": "SOL", "toMint": "USDC", "amount": 0.5})
    right = {"params": {"amount": 0.5, "toMint": "USDC", "fromMint": "SOL"}, "type": "swap"}
    assert hash_intent(left) == hash_intent(right)


def test_intent_hash_distinguishes_types():
    params = {"amount": 1}
    assert hash_intent({"type": "transfer", "params": params}) != hash_intent({"type": "stake", "params": params})

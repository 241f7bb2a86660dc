from services.policy.engine import PolicyEngine
from services.policy.hash import canonical_json, hash_intent, hash_policy
from services.policy.usd_engine import USDPolicyEngine

__all__ = [
    "PolicyEngine",
    "USDPolicyEngine",
    "canonical_json",
    "hash_intent",
    "hash_policy",
]

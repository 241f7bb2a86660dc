"""Content hashes for policies and intents.

Both hashes are the first 16 hex characters of a SHA-256 digest over a compact
JSON rendering with lexicographically sorted object keys. Numbers render the
way JavaScript's ``JSON.stringify`` does (``1`` not ``1.0``) so digests stay
comparable with records written by other tooling.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping

from models.policy import AgentPolicy, Intent

HASH_LENGTH = 16


def _canonical(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _canonical(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return int(value)
    return value


def canonical_json(value: Any) -> str:
    return json.dumps(_canonical(value), separators=(",", ":"), ensure_ascii=False)


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def hash_policy(policy: AgentPolicy | Mapping[str, Any]) -> str:
    document = policy.to_document() if isinstance(policy, AgentPolicy) else policy
    return _digest(canonical_json(document))


def hash_intent(intent: Intent | Mapping[str, Any]) -> str:
    if isinstance(intent, Intent):
        intent_type, params = intent.type, intent.params
    else:
        intent_type, params = intent["type"], intent.get("params") or {}
    # Envelope order is fixed (type, then params); params are sorted.
    envelope = json.dumps(
        {"type": intent_type, "params": _canonical(params)},
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return _digest(envelope)

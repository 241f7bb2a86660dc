import sys
from datetime import timedelta
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import pytest
from sqlalchemy import select

from models.database import PendingTransaction
from services.errors import ConflictError, ExpiredError, ForbiddenError, NotFoundError
from services.hitl import ApprovalQueue
from support import WebhookRecorder, build_session_factory
from workers.hitl_expiry_worker import sweep_once

INTENT = {"type": "transfer", "params": {"to": "abc", "amount": 0.1}}


async def _store(queue, agent_id="agent-1", webhook_url=None):
    return await queue.store(
        agent_id=agent_id,
        intent=INTENT,
        intent_hash="a" * 16,
        policy_hash="b" * 16,
        reasoning="rebalance",
        usd_value=10.0,
        simulation={"success": True},
        webhook_url=webhook_url,
    )


async def _status(session_factory, tx_id):
    async with session_factory() as session:
        return (
            await session.execute(select(PendingTransaction.status).where(PendingTransaction.id == tx_id))
        ).scalar_one()


@pytest.mark.asyncio
async def test_store_sets_24h_expiry_and_notifies(tmp_path, clock):
    engine, session_factory = await build_session_factory(tmp_path)
    recorder = WebhookRecorder()
    queue = ApprovalQueue(session_factory, notifier=recorder.notifier(), clock=clock)
    try:
        pending = await _store(queue, webhook_url="https://hooks.test/aegis")

        assert pending.status == "awaiting_approval"
        assert pending.expires_at - pending.created_at == timedelta(hours=24)
        assert recorder.requests[0][0] == "https://hooks.test/aegis"
        assert recorder.requests[0][1]["event"] == "pending_approval"
        assert recorder.requests[0][1]["pendingId"] == pending.id

        async with session_factory() as session:
            row = await session.get(PendingTransaction, pending.id)
        assert row.webhook_notified is True
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_failed_webhook_leaves_flag_unset(tmp_path, clock):
    engine, session_factory = await build_session_factory(tmp_path)
    queue = ApprovalQueue(session_factory, notifier=WebhookRecorder(status_code=500).notifier(), clock=clock)
    try:
        pending = await _store(queue, webhook_url="https://hooks.test/aegis")
        async with session_factory() as session:
            row = await session.get(PendingTransaction, pending.id)
        assert row.webhook_notified is False
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_approve_and_reject_transitions(tmp_path, clock):
    engine, session_factory = await build_session_factory(tmp_path)
    queue = ApprovalQueue(session_factory, clock=clock)
    try:
        first = await _store(queue)
        clock.advance(seconds=1)
        second = await _store(queue)

        listed = await queue.list_pending("agent-1")
        assert [p.id for p in listed] == [second.id, first.id]

        approved = await queue.approve(first.id, "agent-1")
        rejected = await queue.reject(second.id, "agent-1")

        assert approved.status == "approved"
        assert rejected.status == "rejected"
        assert await queue.list_pending("agent-1") == []
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_decision_on_resolved_record_fails_without_mutation(tmp_path, clock):
    engine, session_factory = await build_session_factory(tmp_path)
    queue = ApprovalQueue(session_factory, clock=clock)
    try:
        pending = await _store(queue)
        await queue.reject(pending.id, "agent-1")

        with pytest.raises(ConflictError, match="already rejected"):
            await queue.approve(pending.id, "agent-1")
        assert await _status(session_factory, pending.id) == "rejected"
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_ownership_and_missing_records(tmp_path, clock):
    engine, session_factory = await build_session_factory(tmp_path)
    queue = ApprovalQueue(session_factory, clock=clock)
    try:
        pending = await _store(queue)
        with pytest.raises(ForbiddenError):
            await queue.approve(pending.id, "someone-else")
        with pytest.raises(NotFoundError):
            await queue.approve("missing", "agent-1")
        assert await _status(session_factory, pending.id) == "awaiting_approval"
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_expired_record_cannot_be_approved(tmp_path, clock):
    engine, session_factory = await build_session_factory(tmp_path)
    queue = ApprovalQueue(session_factory, clock=clock)
    try:
        pending = await _store(queue)
        clock.advance(hours=24, seconds=1)

        with pytest.raises(ExpiredError):
            await queue.approve(pending.id, "agent-1")
        assert await _status(session_factory, pending.id) == "expired"

        with pytest.raises(ConflictError):
            await queue.approve(pending.id, "agent-1")
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_sweep_expires_only_overdue_records(tmp_path, clock):
    engine, session_factory = await build_session_factory(tmp_path)
    queue = ApprovalQueue(session_factory, clock=clock)
    try:
        old = await _store(queue)
        clock.advance(hours=20)
        fresh = await _store(queue)
        approved = await _store(queue)
        await queue.approve(approved.id, "agent-1")
        clock.advance(hours=5)

        assert await sweep_once(queue) == 1
        assert await _status(session_factory, old.id) == "expired"
        assert await _status(session_factory, fresh.id) == "awaiting_approval"
        assert await _status(session_factory, approved.id) == "approved"

        assert await sweep_once(queue) == 0
    finally:
        await engine.dispose()

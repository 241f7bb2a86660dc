import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import httpx
import pytest

from main import create_app
from support import RECIPIENT, SIGNATURE, build_session_factory, make_services

TRANSFER = {"intent": {"type": "transfer", "params": {"to": RECIPIENT, "amount": 0.5}}, "reasoning": "rebalance"}


class _Harness:
    def __init__(self, engine, services, client):
        self.engine = engine
        self.services = services
        self.client = client

    async def create_agent(self, **body):
        resp = await self.client.post("/agents", json=body)
        assert resp.status_code == 201
        data = resp.json()
        return data["agentId"], {"x-api-key": data["apiKey"]}

    async def close(self):
        await self.client.aclose()
        await self.services.notifier.close()
        await self.engine.dispose()


async def _harness(tmp_path, clock):
    engine, session_factory = await build_session_factory(tmp_path)
    services = make_services(session_factory, clock)
    app = create_app(services)
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
    return _Harness(engine, services, client)


@pytest.mark.asyncio
async def test_register_and_read_agent(tmp_path, clock):
    h = await _harness(tmp_path, clock)
    try:
        agent_id, _ = await h.create_agent(policy={"maxTxAmountSOL": 2}, executionMode="supervised")

        detail = (await h.client.get(f"/agents/{agent_id}")).json()
        assert detail["policy"]["maxTxAmountSOL"] == 2
        assert detail["executionMode"] == "supervised"
        assert len(detail["policyHash"]) == 16
        assert detail["usdPolicy"] is None

        listed = (await h.client.get("/agents")).json()["agents"]
        assert [a["id"] for a in listed] == [agent_id]

        balance = (await h.client.get(f"/agents/{agent_id}/balance")).json()
        assert balance["balanceSol"] == 2.0
        assert balance["dailySpend"]["sol"] == 0.0
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_invalid_registration_is_400(tmp_path, clock):
    h = await _harness(tmp_path, clock)
    try:
        resp = await h.client.post("/agents", json={"policy": {"maxTxAmountSOL": "lots"}})
        assert resp.status_code == 400
        assert resp.json()["error"].startswith("invalid policy")

        resp = await h.client.post("/agents", json={"minOperationalUSD": -5})
        assert resp.status_code == 400
        assert resp.json()["errors"]
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_authentication_failures(tmp_path, clock):
    h = await _harness(tmp_path, clock)
    try:
        agent_id, headers = await h.create_agent()

        resp = await h.client.get(f"/agents/{agent_id}/transactions")
        assert (resp.status_code, resp.json()) == (401, {"error": "missing x-api-key header"})

        resp = await h.client.get(f"/agents/{agent_id}/transactions", headers={"x-api-key": "0" * 64})
        assert (resp.status_code, resp.json()) == (401, {"error": "invalid api key"})

        resp = await h.client.get("/agents/nope/transactions", headers=headers)
        assert (resp.status_code, resp.json()) == (404, {"error": "agent not found"})

        resp = await h.client.get("/agents/nope")
        assert resp.status_code == 404
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_execute_and_list_transactions(tmp_path, clock):
    h = await _harness(tmp_path, clock)
    try:
        agent_id, headers = await h.create_agent()

        resp = await h.client.post(f"/agents/{agent_id}/execute", json=TRANSFER, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["signature"] == SIGNATURE

        txs = (await h.client.get(f"/agents/{agent_id}/transactions", headers=headers)).json()["transactions"]
        assert [(t["status"], t["signature"], t["reasoning"]) for t in txs] == [
            ("confirmed", SIGNATURE, "rebalance")
        ]

        artifacts = (await h.client.get(f"/agents/{agent_id}/audit", headers=headers)).json()["artifacts"]
        assert artifacts[0]["approvalState"] == "auto"

        export = await h.client.get(f"/agents/{agent_id}/audit/export", headers=headers)
        assert export.headers["content-disposition"] == f'attachment; filename="audit-{agent_id}.json"'
        assert export.json()[0]["finalTxSignature"] == SIGNATURE
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_execute_error_statuses(tmp_path, clock):
    h = await _harness(tmp_path, clock)
    try:
        agent_id, headers = await h.create_agent()
        url = f"/agents/{agent_id}/execute"

        resp = await h.client.post(url, json={"intent": {"type": "transfer", "params": {"to": RECIPIENT, "amount": 3}}},
                                   headers=headers)
        assert resp.status_code == 403
        assert resp.json()["violations"][0]["code"] == "AMOUNT_EXCEEDS_TX_CAP"

        resp = await h.client.post(url, json={"intent": {"type": "teleport", "params": {}}}, headers=headers)
        assert resp.status_code == 404
        assert resp.json()["error"].startswith('unknown intent type "teleport"')

        resp = await h.client.post(url, json={"reasoning": "no intent"}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["errors"]

        resp = await h.client.post(url, json={"intent": {"type": "transfer", "params": {"to": "bad"}}},
                                   headers=headers)
        assert resp.status_code == 400
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_paused_agent_can_be_reactivated_but_not_execute(tmp_path, clock):
    h = await _harness(tmp_path, clock)
    try:
        agent_id, headers = await h.create_agent()

        resp = await h.client.patch(f"/agents/{agent_id}/status", json={"status": "paused"}, headers=headers)
        assert resp.json() == {"agentId": agent_id, "status": "paused"}

        resp = await h.client.post(f"/agents/{agent_id}/execute", json=TRANSFER, headers=headers)
        assert (resp.status_code, resp.json()) == (403, {"error": "agent is not active"})

        resp = await h.client.patch(f"/agents/{agent_id}/status", json={"status": "active"}, headers=headers)
        assert resp.status_code == 200

        resp = await h.client.patch(f"/agents/{agent_id}/status", json={"status": "gone"}, headers=headers)
        assert resp.status_code == 400
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_supervised_approval_flow(tmp_path, clock):
    h = await _harness(tmp_path, clock)
    try:
        agent_id, headers = await h.create_agent()
        resp = await h.client.patch(
            f"/agents/{agent_id}/execution-mode", json={"executionMode": "supervised"}, headers=headers
        )
        assert resp.json()["executionMode"] == "supervised"

        resp = await h.client.post(f"/agents/{agent_id}/execute", json=TRANSFER, headers=headers)
        assert resp.status_code == 202
        pending_id = resp.json()["pendingId"]

        pending = (await h.client.get(f"/agents/{agent_id}/pending", headers=headers)).json()["pending"]
        assert [p["id"] for p in pending] == [pending_id]

        clock.advance(seconds=30)
        resp = await h.client.patch(f"/agents/{agent_id}/pending/{pending_id}/approve", headers=headers)
        assert resp.json() == {"pendingId": pending_id, "status": "approved"}

        resp = await h.client.patch(f"/agents/{agent_id}/pending/{pending_id}/reject", headers=headers)
        assert resp.status_code == 409

        resp = await h.client.patch(f"/agents/{agent_id}/pending/missing/approve", headers=headers)
        assert resp.status_code == 404
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_expired_pending_returns_410(tmp_path, clock):
    h = await _harness(tmp_path, clock)
    try:
        agent_id, headers = await h.create_agent(executionMode="supervised")
        pending_id = (
            await h.client.post(f"/agents/{agent_id}/execute", json=TRANSFER, headers=headers)
        ).json()["pendingId"]

        clock.advance(hours=25)
        resp = await h.client.patch(f"/agents/{agent_id}/pending/{pending_id}/approve", headers=headers)
        assert resp.status_code == 410
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_policy_and_usd_policy_updates(tmp_path, clock):
    h = await _harness(tmp_path, clock)
    try:
        agent_id, headers = await h.create_agent()

        resp = await h.client.patch(f"/agents/{agent_id}/policy", json={"maxTxAmountSOL": 3}, headers=headers)
        assert resp.json()["version"] == 2

        versions = (await h.client.get(f"/agents/{agent_id}/policy/versions", headers=headers)).json()["versions"]
        assert [v["version"] for v in versions] == [1, 2]

        resp = await h.client.patch(
            f"/agents/{agent_id}/usd-policy",
            json={"usdPolicy": {"maxTransactionUSD": 100}, "minOperationalUSD": 25},
            headers=headers,
        )
        assert resp.json()["usdPolicy"] == {"maxTransactionUSD": 100}
        assert resp.json()["minOperationalUSD"] == 25

        resp = await h.client.patch(
            f"/agents/{agent_id}/webhook", json={"webhookUrl": "https://hooks.test/a"}, headers=headers
        )
        assert resp.json()["webhookUrl"] == "https://hooks.test/a"
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_capital_endpoints(tmp_path, clock):
    h = await _harness(tmp_path, clock)
    try:
        agent_id, headers = await h.create_agent()

        resp = await h.client.post(
            f"/agents/{agent_id}/funding", json={"amountSOL": 1, "amountUSD": 100, "note": "seed"}, headers=headers
        )
        assert resp.status_code == 201
        assert resp.json()["eventType"] == "funding"

        resp = await h.client.post(f"/agents/{agent_id}/pnl-snapshot", json={"realizedPnlUSD": -4}, headers=headers)
        assert resp.status_code == 201

        capital = (await h.client.get(f"/agents/{agent_id}/capital", headers=headers)).json()
        assert capital["totalInjectedUSD"] == 100
        assert capital["realizedPnlUSD"] == -4
        assert capital["agentROI"] == pytest.approx(100.0)
        assert len(capital["events"]) == 2

        export = await h.client.get(f"/agents/{agent_id}/capital/export", headers=headers)
        assert export.headers["content-type"].startswith("text/csv")
        assert export.text.split("\n")[0] == "date,type,intent_type,signature,amount_sol,usd_value,status,note"

        perf = (await h.client.get(f"/agents/{agent_id}/performance", headers=headers)).json()
        assert perf["successRate"] == 0.0

        resp = await h.client.post(f"/agents/{agent_id}/funding", json={"amountUSD": -1}, headers=headers)
        assert resp.status_code == 400
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_health(tmp_path, clock):
    h = await _harness(tmp_path, clock)
    try:
        resp = await h.client.get("/health")
        assert resp.json()["status"] == "ok"
    finally:
        await h.close()

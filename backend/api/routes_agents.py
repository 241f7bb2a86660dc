"""
Agent API Routes

Registration, lookup and the authenticated configuration mutations.
"""

import asyncio
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from api.deps import Services, authenticate, get_services
from config import settings
from models.database import Agent, ExecutionMode
from services.agent_registry import policy_of, usd_policy_of
from services.oracle.valuation import LAMPORTS_PER_SOL
from services.policy.hash import hash_policy
from services.transactions import transaction_to_dict
from utils.logger import api_logger as logger
from utils.utcnow import to_iso

router = APIRouter(prefix="/agents", tags=["Agents"])


# ==================== REQUEST MODELS ====================


class CreateAgentRequest(BaseModel):
    policy: Optional[dict[str, Any]] = None
    usd_policy: Optional[dict[str, Any]] = Field(default=None, alias="usdPolicy")
    webhook_url: Optional[str] = Field(default=None, alias="webhookUrl")
    execution_mode: str = Field(default=ExecutionMode.AUTONOMOUS.value, alias="executionMode")
    min_operational_usd: Optional[float] = Field(default=None, ge=0, alias="minOperationalUSD")

    model_config = {"populate_by_name": True}


class StatusRequest(BaseModel):
    status: str


class ExecutionModeRequest(BaseModel):
    execution_mode: str = Field(alias="executionMode")

    model_config = {"populate_by_name": True}


class USDPolicyRequest(BaseModel):
    usd_policy: Optional[dict[str, Any]] = Field(default=None, alias="usdPolicy")
    min_operational_usd: Optional[float] = Field(default=None, ge=0, alias="minOperationalUSD")

    model_config = {"populate_by_name": True}


class WebhookRequest(BaseModel):
    webhook_url: Optional[str] = Field(default=None, alias="webhookUrl")

    model_config = {"populate_by_name": True}


# ==================== HELPERS ====================


def agent_summary(agent: Agent) -> dict[str, Any]:
    return {
        "id": agent.id,
        "publicKey": agent.public_key,
        "status": agent.status,
        "executionMode": agent.execution_mode,
        "reputationScore": agent.reputation_score,
        "createdAt": to_iso(agent.created_at),
    }


def agent_detail(agent: Agent) -> dict[str, Any]:
    policy = policy_of(agent)
    usd_policy = usd_policy_of(agent)
    return {
        **agent_summary(agent),
        "policy": policy.to_document(),
        "policyHash": hash_policy(policy),
        "usdPolicy": usd_policy.to_document() if usd_policy else None,
        "webhookUrl": agent.webhook_url,
        "minOperationalUSD": agent.min_operational_usd,
        "lastActivityAt": to_iso(agent.last_activity_at),
        "updatedAt": to_iso(agent.updated_at),
    }


# ==================== ENDPOINTS ====================


@router.get("")
async def list_agents(services: Services = Depends(get_services)):
    agents = await services.agents.list_agents()
    return {"agents": [agent_summary(a) for a in agents]}


@router.post("", status_code=201)
async def create_agent(body: CreateAgentRequest, services: Services = Depends(get_services)):
    created = await services.agents.create_agent(
        policy=body.policy,
        usd_policy=body.usd_policy,
        webhook_url=body.webhook_url,
        execution_mode=body.execution_mode,
        min_operational_usd=body.min_operational_usd,
    )
    return {
        "agentId": created.agent.id,
        "publicKey": created.agent.public_key,
        "apiKey": created.api_key,
        "note": "store the apiKey now; it cannot be retrieved again",
    }


@router.get("/{agent_id}")
async def get_agent(agent_id: str, services: Services = Depends(get_services)):
    agent = await services.agents.require_agent(agent_id)
    return agent_detail(agent)


@router.get("/{agent_id}/balance")
async def get_balance(agent_id: str, services: Services = Depends(get_services)):
    agent = await services.agents.require_agent(agent_id)
    try:
        lamports = await asyncio.wait_for(
            services.ledger.get_balance(agent.public_key),
            timeout=settings.LEDGER_READ_TIMEOUT_SECONDS,
        )
    except Exception as exc:
        logger.warning("Balance lookup failed", agent_id=agent_id, error=str(exc))
        return JSONResponse(status_code=502, content={"error": f"balance lookup failed: {exc}"})

    daily = await services.spend.get_daily_spend(agent_id)
    return {
        "agentId": agent.id,
        "publicKey": agent.public_key,
        "balanceSol": lamports / LAMPORTS_PER_SOL,
        "balanceLamports": lamports,
        "dailySpend": daily.to_dict(),
    }


@router.patch("/{agent_id}/status")
async def update_status(
    agent_id: str,
    body: StatusRequest,
    services: Services = Depends(get_services),
    agent: Agent = Depends(authenticate),
):
    updated = await services.agents.update_status(agent.id, body.status)
    return {"agentId": updated.id, "status": updated.status}


@router.patch("/{agent_id}/execution-mode")
async def update_execution_mode(
    agent_id: str,
    body: ExecutionModeRequest,
    services: Services = Depends(get_services),
    agent: Agent = Depends(authenticate),
):
    updated = await services.agents.update_execution_mode(agent.id, body.execution_mode)
    return {"agentId": updated.id, "executionMode": updated.execution_mode}


@router.patch("/{agent_id}/usd-policy")
async def update_usd_policy(
    agent_id: str,
    body: USDPolicyRequest,
    services: Services = Depends(get_services),
    agent: Agent = Depends(authenticate),
):
    updated = await services.agents.update_usd_policy(agent.id, body.usd_policy)
    if "min_operational_usd" in body.model_fields_set:
        updated = await services.agents.update_min_operational_usd(agent.id, body.min_operational_usd)
    usd_policy = usd_policy_of(updated)
    return {
        "agentId": updated.id,
        "usdPolicy": usd_policy.to_document() if usd_policy else None,
        "minOperationalUSD": updated.min_operational_usd,
    }


@router.patch("/{agent_id}/policy")
async def update_policy(
    agent_id: str,
    body: dict[str, Any],
    services: Services = Depends(get_services),
    agent: Agent = Depends(authenticate),
):
    updated, version = await services.agents.update_policy(agent.id, body)
    policy = policy_of(updated)
    return {
        "agentId": updated.id,
        "policy": policy.to_document(),
        "policyHash": hash_policy(policy),
        "version": version,
    }


@router.get("/{agent_id}/policy/versions")
async def list_policy_versions(
    agent_id: str,
    services: Services = Depends(get_services),
    agent: Agent = Depends(authenticate),
):
    versions = await services.agents.policy_versions(agent.id)
    return {
        "agentId": agent.id,
        "versions": [
            {
                "version": v.version,
                "policyHash": v.policy_hash,
                "policy": v.policy_json,
                "createdAt": to_iso(v.created_at),
            }
            for v in versions
        ],
    }


@router.patch("/{agent_id}/webhook")
async def update_webhook(
    agent_id: str,
    body: WebhookRequest,
    services: Services = Depends(get_services),
    agent: Agent = Depends(authenticate),
):
    updated = await services.agents.update_webhook(agent.id, body.webhook_url)
    return {"agentId": updated.id, "webhookUrl": updated.webhook_url}


@router.get("/{agent_id}/transactions")
async def list_transactions(
    agent_id: str,
    limit: int = Query(default=50, ge=1, le=1000),
    services: Services = Depends(get_services),
    agent: Agent = Depends(authenticate),
):
    rows = await services.transactions.list(agent.id, limit)
    return {"agentId": agent.id, "transactions": [transaction_to_dict(r) for r in rows]}

"""
Execution API Routes

Intent execution and the human-in-the-loop approval endpoints.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from api.deps import Services, authenticate, authenticate_active, get_services
from models.database import Agent

router = APIRouter(prefix="/agents", tags=["Execution"])


class IntentBody(BaseModel):
    type: str
    params: dict[str, Any] = Field(default_factory=dict)


class ExecuteRequest(BaseModel):
    intent: IntentBody
    reasoning: Optional[str] = ""


@router.post("/{agent_id}/execute")
async def execute_intent(
    agent_id: str,
    body: ExecuteRequest,
    services: Services = Depends(get_services),
    agent: Agent = Depends(authenticate_active),
):
    outcome = await services.orchestrator.execute(
        agent.id,
        body.intent.model_dump(),
        reasoning=body.reasoning,
    )
    return JSONResponse(status_code=outcome.http_status, content=outcome.body)


@router.get("/{agent_id}/pending")
async def list_pending(
    agent_id: str,
    services: Services = Depends(get_services),
    agent: Agent = Depends(authenticate),
):
    pending = await services.approvals.list_pending(agent.id)
    return {"agentId": agent.id, "pending": [p.to_dict() for p in pending]}


@router.patch("/{agent_id}/pending/{tx_id}/approve")
async def approve_pending(
    agent_id: str,
    tx_id: str,
    services: Services = Depends(get_services),
    agent: Agent = Depends(authenticate),
):
    summary = await services.orchestrator.approve_pending(agent.id, tx_id)
    return {"pendingId": summary.id, "status": summary.status}


@router.patch("/{agent_id}/pending/{tx_id}/reject")
async def reject_pending(
    agent_id: str,
    tx_id: str,
    services: Services = Depends(get_services),
    agent: Agent = Depends(authenticate),
):
    summary = await services.orchestrator.reject_pending(agent.id, tx_id)
    return {"pendingId": summary.id, "status": summary.status}

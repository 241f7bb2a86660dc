"""
Audit API Routes
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from api.deps import Services, authenticate, get_services
from models.database import Agent

router = APIRouter(prefix="/agents", tags=["Audit"])


@router.get("/{agent_id}/audit")
async def read_audit(
    agent_id: str,
    limit: int = Query(default=50, ge=1, le=1000),
    services: Services = Depends(get_services),
    agent: Agent = Depends(authenticate),
):
    artifacts = await services.audit.read(agent.id, limit)
    return {"agentId": agent.id, "artifacts": [a.to_dict() for a in artifacts]}


@router.get("/{agent_id}/audit/export")
async def export_audit(
    agent_id: str,
    services: Services = Depends(get_services),
    agent: Agent = Depends(authenticate),
):
    payload = await services.audit.export(agent.id)
    return Response(
        content=payload,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="audit-{agent.id}.json"'},
    )

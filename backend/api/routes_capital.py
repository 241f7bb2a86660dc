"""
Capital API Routes

Funding events, PnL snapshots, ledger state, performance and the CSV export.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from pydantic import BaseModel, Field

from api.deps import Services, authenticate, get_services
from models.database import Agent
from services.capital import capital_event_to_dict
from services.oracle.valuation import portfolio_usd

router = APIRouter(prefix="/agents", tags=["Capital"])


class FundingRequest(BaseModel):
    amount_sol: float = Field(default=0.0, ge=0, alias="amountSOL")
    amount_usd: float = Field(default=0.0, ge=0, alias="amountUSD")
    note: Optional[str] = None

    model_config = {"populate_by_name": True}


class PnlSnapshotRequest(BaseModel):
    realized_pnl_usd: float = Field(alias="realizedPnlUSD")
    note: Optional[str] = None

    model_config = {"populate_by_name": True}


@router.get("/{agent_id}/capital")
async def get_capital(
    agent_id: str,
    services: Services = Depends(get_services),
    agent: Agent = Depends(authenticate),
):
    current = await portfolio_usd(services.oracle, services.ledger, agent.public_key)
    state = await services.capital.compute_ledger_state(agent.id, current)
    events = await services.capital.list_events(agent.id, 50)
    return {**state.to_dict(), "events": [capital_event_to_dict(e) for e in events]}


@router.get("/{agent_id}/capital/export")
async def export_capital(
    agent_id: str,
    services: Services = Depends(get_services),
    agent: Agent = Depends(authenticate),
):
    csv_text = await services.capital.export_accounting_csv(agent.id)
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="accounting-{agent.id}.csv"'},
    )


@router.post("/{agent_id}/funding", status_code=201)
async def log_funding(
    agent_id: str,
    body: FundingRequest,
    services: Services = Depends(get_services),
    agent: Agent = Depends(authenticate),
):
    event = await services.capital.log_funding_event(agent.id, body.amount_sol, body.amount_usd, body.note)
    return capital_event_to_dict(event)


@router.post("/{agent_id}/pnl-snapshot", status_code=201)
async def log_pnl_snapshot(
    agent_id: str,
    body: PnlSnapshotRequest,
    services: Services = Depends(get_services),
    agent: Agent = Depends(authenticate),
):
    event = await services.capital.log_pnl_snapshot(agent.id, body.realized_pnl_usd, body.note)
    return capital_event_to_dict(event)


@router.get("/{agent_id}/performance")
async def get_performance(
    agent_id: str,
    services: Services = Depends(get_services),
    agent: Agent = Depends(authenticate),
):
    summary = await services.capital.compute_performance(agent.id)
    return summary.to_dict()

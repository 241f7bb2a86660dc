"""Service wiring and request dependencies shared by the routers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, Request

from models.database import AgentStatus, AsyncSessionLocal
from services.agent_registry import AgentRegistry
from services.audit_trail import AuditTrail
from services.auth import verify_api_key_async
from services.capital import CapitalLedger
from services.errors import ForbiddenError, NotFoundError, UnauthorizedError
from services.execution_orchestrator import ExecutionOrchestrator
from services.hitl import ApprovalQueue
from services.intents.registry import IntentRegistry, intent_registry
from services.keystore import EncryptedKeystore, Keystore
from services.ledger.base import LedgerAdapter
from services.oracle.aggregator import PriceOracle
from services.simulation_analyzer import SimulationAnalyzer
from services.spend_tracker import SpendTracker
from services.transactions import TransactionLog
from services.webhooks import WebhookNotifier
from utils.clock import Clock, system_clock


@dataclass
class Services:
    agents: AgentRegistry
    transactions: TransactionLog
    spend: SpendTracker
    oracle: PriceOracle
    ledger: LedgerAdapter
    approvals: ApprovalQueue
    audit: AuditTrail
    capital: CapitalLedger
    notifier: WebhookNotifier
    orchestrator: ExecutionOrchestrator

    async def close(self) -> None:
        await self.notifier.close()
        await self.oracle.close()
        await self.ledger.close()


def build_services(
    *,
    session_factory=AsyncSessionLocal,
    ledger: Optional[LedgerAdapter] = None,
    keystore: Optional[Keystore] = None,
    oracle: Optional[PriceOracle] = None,
    notifier: Optional[WebhookNotifier] = None,
    registry: IntentRegistry = intent_registry,
    clock: Clock = system_clock,
    bcrypt_rounds: Optional[int] = None,
    submit_timeout_seconds: Optional[float] = None,
) -> Services:
    if ledger is None:
        from services.ledger.rpc import SolanaRpcLedger

        ledger = SolanaRpcLedger()
    keystore = keystore or EncryptedKeystore()
    oracle = oracle or PriceOracle(clock=clock)
    notifier = notifier or WebhookNotifier()

    agents = AgentRegistry(session_factory, keystore, clock=clock, bcrypt_rounds=bcrypt_rounds)
    transactions = TransactionLog(session_factory, clock=clock)
    spend = SpendTracker(session_factory, clock=clock)
    approvals = ApprovalQueue(session_factory, notifier=notifier, clock=clock)
    audit = AuditTrail(session_factory, clock=clock)
    orchestrator = ExecutionOrchestrator(
        agents=agents,
        transactions=transactions,
        spend=spend,
        oracle=oracle,
        ledger=ledger,
        keystore=keystore,
        analyzer=SimulationAnalyzer(ledger),
        approvals=approvals,
        audit=audit,
        notifier=notifier,
        registry=registry,
        clock=clock,
        submit_timeout_seconds=submit_timeout_seconds,
    )
    return Services(
        agents=agents,
        transactions=transactions,
        spend=spend,
        oracle=oracle,
        ledger=ledger,
        approvals=approvals,
        audit=audit,
        capital=CapitalLedger(session_factory, transactions, clock=clock),
        notifier=notifier,
        orchestrator=orchestrator,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


async def authenticate(
    agent_id: str,
    request: Request,
    x_api_key: Optional[str] = Header(default=None, alias="x-api-key"),
):
    """Resolve the agent in the path and check its API key. Any status passes."""
    if not x_api_key:
        raise UnauthorizedError("missing x-api-key header")
    services = get_services(request)
    agent = await services.agents.get_agent(agent_id)
    if agent is None:
        raise NotFoundError("agent not found")
    if not await verify_api_key_async(x_api_key, agent.api_key_hash):
        raise UnauthorizedError("invalid api key")
    return agent


async def authenticate_active(
    agent_id: str,
    request: Request,
    x_api_key: Optional[str] = Header(default=None, alias="x-api-key"),
):
    agent = await authenticate(agent_id, request, x_api_key)
    if agent.status != AgentStatus.ACTIVE.value:
        raise ForbiddenError("agent is not active")
    return agent

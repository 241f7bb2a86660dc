from api.routes_agents import router as agents_router
from api.routes_audit import router as audit_router
from api.routes_capital import router as capital_router
from api.routes_execute import router as execute_router

__all__ = ["agents_router", "audit_router", "capital_router", "execute_router"]

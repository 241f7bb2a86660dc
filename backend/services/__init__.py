from importlib import import_module

__all__ = [
    "AgentRegistry",
    "ApprovalQueue",
    "AuditTrail",
    "CapitalLedger",
    "ExecutionOrchestrator",
    "SimulationAnalyzer",
    "SpendTracker",
    "TransactionLog",
    "WebhookNotifier",
    "intent_registry",
]

_LAZY_EXPORTS = {
    "AgentRegistry": ("services.agent_registry", "AgentRegistry"),
    "ApprovalQueue": ("services.hitl", "ApprovalQueue"),
    "AuditTrail": ("services.audit_trail", "AuditTrail"),
    "CapitalLedger": ("services.capital", "CapitalLedger"),
    "ExecutionOrchestrator": ("services.execution_orchestrator", "ExecutionOrchestrator"),
    "SimulationAnalyzer": ("services.simulation_analyzer", "SimulationAnalyzer"),
    "SpendTracker": ("services.spend_tracker", "SpendTracker"),
    "TransactionLog": ("services.transactions", "TransactionLog"),
    "WebhookNotifier": ("services.webhooks", "WebhookNotifier"),
    "intent_registry": ("services.intents.registry", "intent_registry"),
}


def __getattr__(name):
    if name not in _LAZY_EXPORTS:
        raise AttributeError(f"module 'services' has no attribute {name!r}")

    module_name, attr_name = _LAZY_EXPORTS[name]
    module = import_module(module_name)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value

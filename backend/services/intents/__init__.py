from services.intents.base import IntentHandler, IntentParams
from services.intents.registry import IntentRegistry, build_default_registry, intent_registry

__all__ = [
    "IntentHandler",
    "IntentParams",
    "IntentRegistry",
    "build_default_registry",
    "intent_registry",
]

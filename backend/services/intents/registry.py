from __future__ import annotations

from typing import Callable

from services.errors import NotFoundError
from services.intents.base import IntentHandler
from services.intents.cpi import CpiIntentHandler
from services.intents.flash import FlashIntentHandler
from services.intents.lend import LendIntentHandler
from services.intents.stake import StakeIntentHandler
from services.intents.swap import SwapIntentHandler
from services.intents.transfer import TransferIntentHandler

HandlerFactory = Callable[[], IntentHandler]


class IntentRegistry:
    """Maps an intent type string to a factory producing a fresh handler."""

    def __init__(self) -> None:
        self._factories: dict[str, HandlerFactory] = {}

    def register(self, intent_type: str, factory: HandlerFactory) -> None:
        self._factories[intent_type] = factory

    def resolve(self, intent_type: str) -> IntentHandler:
        factory = self._factories.get(intent_type)
        if factory is None:
            known = ", ".join(self.known_types())
            raise NotFoundError(f'unknown intent type "{intent_type}". known types: {known}')
        return factory()

    def known_types(self) -> list[str]:
        return list(self._factories)


def build_default_registry() -> IntentRegistry:
    registry = IntentRegistry()
    for handler_cls in (
        TransferIntentHandler,
        SwapIntentHandler,
        StakeIntentHandler,
        LendIntentHandler,
        FlashIntentHandler,
        CpiIntentHandler,
    ):
        registry.register(handler_cls.intent_type, handler_cls)
    return registry


intent_registry = build_default_registry()

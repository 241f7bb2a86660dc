"""Best-effort webhook delivery and low-balance funding alerts."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from config import settings
from utils.logger import get_logger

logger = get_logger("webhooks")


@dataclass
class FundingAlert:
    agent_id: str
    balance_usd: float
    min_operational_usd: float
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "agentId": self.agent_id,
            "balanceUSD": self.balance_usd,
            "minOperationalUSD": self.min_operational_usd,
            "message": self.message,
        }


class WebhookNotifier:
    """POSTs JSON event envelopes. Delivery failures are logged, never raised."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: Optional[float] = None):
        self.timeout = timeout or settings.WEBHOOK_TIMEOUT_SECONDS
        self._http_client = client
        self._tasks: set[asyncio.Task] = set()

    async def notify(self, url: str, payload: dict[str, Any]) -> bool:
        if not url:
            return False
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)

        try:
            resp = await self._http_client.post(url, json=payload, timeout=self.timeout)
            if 200 <= resp.status_code < 300:
                logger.debug("Webhook delivered", url=url, event=payload.get("event"))
                return True
            logger.warning(
                "Webhook endpoint rejected event",
                url=url,
                event=payload.get("event"),
                status=resp.status_code,
            )
            return False
        except httpx.TimeoutException:
            logger.warning("Webhook delivery timed out", url=url, event=payload.get("event"))
            return False
        except Exception as exc:
            logger.warning("Webhook delivery failed", url=url, event=payload.get("event"), error=str(exc))
            return False

    def dispatch(self, url: str, payload: dict[str, Any]) -> Optional[asyncio.Task]:
        """Schedule ``notify`` without waiting for it."""
        if not url:
            return None
        task = asyncio.create_task(self.notify(url, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every dispatched delivery (used at shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    def trigger_funding_alert(self, agent, balance_usd: float) -> Optional[FundingAlert]:
        """Return an alert when ``balance_usd`` is under the agent's floor and post it."""
        floor = agent.min_operational_usd
        if floor is None:
            floor = settings.DEFAULT_MIN_OPERATIONAL_USD
        if balance_usd >= floor:
            return None

        alert = FundingAlert(
            agent_id=agent.id,
            balance_usd=balance_usd,
            min_operational_usd=floor,
            message=(
                f"agent balance ${balance_usd:.2f} is below minimum operational threshold ${floor:.2f}"
            ),
        )
        logger.warning("Agent below operational floor", agent_id=agent.id, balance_usd=round(balance_usd, 2))
        if agent.webhook_url:
            self.dispatch(agent.webhook_url, {"event": "low_balance", **alert.to_dict()})
        return alert

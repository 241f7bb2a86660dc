"""Dry-run a built transaction and derive a structured risk report.

Risk derivation follows a fixed order: the operational SOL floor is checked
first, and a negative token delta on an agent-owned account is only
considered when the floor check found nothing.
"""

from __future__ import annotations

import asyncio
import json
import math
from typing import Optional

from config import settings
from models.execution import BalanceSnapshot, SimulationReport, TokenChange
from services.ledger.base import DryRunResult, LedgerAdapter, UnsignedTransaction
from utils.logger import get_logger

logger = get_logger("simulation")


def _format_error(err) -> str:
    if isinstance(err, str):
        return err
    return json.dumps(err, separators=(",", ":"), default=str)


def token_changes(result: DryRunResult, agent_address: str) -> list[TokenChange]:
    """Per-account token deltas between pre and post state; zero deltas are dropped."""
    pre_by_index = {b.account_index: b for b in result.pre_token_balances}
    changes = []
    for post in result.post_token_balances:
        pre = pre_by_index.get(post.account_index)
        delta = post.amount - (pre.amount if pre else 0)
        if delta != 0:
            changes.append(TokenChange(mint=post.mint, delta=delta, owner=post.owner or agent_address))
    return changes


def post_balances(result: DryRunResult, agent_address: str) -> list[BalanceSnapshot]:
    snapshots = []
    for i, lamports in enumerate(result.account_lamports):
        snapshots.append(
            BalanceSnapshot(
                address=agent_address if i == 0 else f"account_{i}",
                lamports=lamports or 0,
            )
        )
    return snapshots


class SimulationAnalyzer:
    def __init__(
        self,
        ledger: LedgerAdapter,
        *,
        sol_floor_lamports: Optional[int] = None,
        compute_buffer_pct: Optional[float] = None,
        tolerance_pct: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.ledger = ledger
        self.sol_floor_lamports = (
            settings.SOL_FLOOR_LAMPORTS if sol_floor_lamports is None else sol_floor_lamports
        )
        self.compute_buffer_pct = (
            settings.COMPUTE_UNIT_BUFFER_PCT if compute_buffer_pct is None else compute_buffer_pct
        )
        self.tolerance_pct = settings.EXPECTED_DELTA_TOLERANCE_PCT if tolerance_pct is None else tolerance_pct
        self.timeout_seconds = timeout_seconds or settings.LEDGER_SIMULATE_TIMEOUT_SECONDS

    async def simulate(
        self,
        tx: UnsignedTransaction,
        agent_address: str,
        *,
        expected_amount: Optional[float] = None,
        expected_mint: Optional[str] = None,
        usd_impact_estimate: Optional[float] = None,
    ) -> SimulationReport:
        """Run the dry-run. Adapter errors and timeouts come back as a failed report."""
        try:
            result = await asyncio.wait_for(
                self.ledger.simulate(tx, [agent_address]), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning("Simulation timed out", agent=agent_address, timeout=self.timeout_seconds)
            return SimulationReport(
                success=False,
                error=f"simulation timed out after {self.timeout_seconds:g}s",
                usd_impact_estimate=usd_impact_estimate,
            )
        except Exception as exc:
            logger.warning("Simulation call failed", agent=agent_address, error=str(exc))
            return SimulationReport(
                success=False,
                error=f"simulation error: {exc}",
                usd_impact_estimate=usd_impact_estimate,
            )

        return self.analyze(
            result,
            agent_address,
            expected_amount=expected_amount,
            expected_mint=expected_mint,
            usd_impact_estimate=usd_impact_estimate,
        )

    def analyze(
        self,
        result: DryRunResult,
        agent_address: str,
        *,
        expected_amount: Optional[float] = None,
        expected_mint: Optional[str] = None,
        usd_impact_estimate: Optional[float] = None,
    ) -> SimulationReport:
        changes = token_changes(result, agent_address)
        balances = post_balances(result, agent_address)

        risky_effects = False
        risk_reason: Optional[str] = None

        agent_balance = next((b for b in balances if b.address == agent_address), None)
        if agent_balance is not None and agent_balance.lamports < self.sol_floor_lamports:
            risky_effects = True
            risk_reason = (
                f"agent SOL balance would drop to {agent_balance.lamports / 1e9:.6f} SOL "
                f"(below {self.sol_floor_lamports / 1e9:g} SOL floor)"
            )

        if not risky_effects:
            negative = next((c for c in changes if c.delta < 0 and c.owner == agent_address), None)
            if negative is not None:
                risky_effects = True
                risk_reason = (
                    f"simulation shows negative token delta of {negative.delta} on mint {negative.mint}"
                )

        slippage_actual: Optional[float] = None
        if len(changes) >= 2 and expected_amount:
            out_change = next(
                (
                    c
                    for c in changes
                    if c.delta > 0
                    and c.owner == agent_address
                    and (expected_mint is None or c.mint == expected_mint)
                ),
                None,
            )
            in_change = next((c for c in changes if c.delta < 0 and c.owner == agent_address), None)
            if out_change and in_change and expected_amount > 0:
                actual = abs(out_change.delta)
                slippage_actual = ((expected_amount - actual) / expected_amount) * 100

        expected_delta_violation = (
            expected_amount is not None
            and slippage_actual is not None
            and abs(slippage_actual) > self.tolerance_pct
        )

        report = SimulationReport(
            success=result.err is None,
            error=_format_error(result.err) if result.err is not None else None,
            logs=list(result.logs),
            # round() first so 1000 * 1.1 forecasts 1100, not 1101
            compute_unit_forecast=math.ceil(round(result.units_consumed * (1 + self.compute_buffer_pct), 6)),
            token_changes=changes,
            post_balances=balances,
            slippage_actual=slippage_actual,
            expected_delta_violation=expected_delta_violation,
            risky_effects=risky_effects,
            risk_reason=risk_reason,
            usd_impact_estimate=usd_impact_estimate,
            units_consumed=result.units_consumed,
        )
        logger.debug(
            "Simulation analyzed",
            agent=agent_address,
            success=report.success,
            risky=report.risky_effects,
            units=result.units_consumed,
        )
        return report

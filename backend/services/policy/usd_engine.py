from __future__ import annotations

from typing import Iterable, Optional

from models.policy import PolicyViolation, USDPolicy
from services.errors import USDPolicyError
from services.policy.engine import format_number
from utils.logger import policy_logger as logger


class USDPolicyEngine:
    """Fiat-denominated rule checks. An unset limit skips its check."""

    def __init__(self, agent_id: str, policy: USDPolicy):
        self.agent_id = agent_id
        self.policy = policy

    def check_tx_usd(self, usd_value: float) -> Optional[PolicyViolation]:
        cap = self.policy.max_transaction_usd
        if cap is None:
            return None
        if usd_value > cap:
            return PolicyViolation(
                code="TX_USD_EXCEEDS_CAP",
                message=f"transaction value ${usd_value:.2f} exceeds maxTransactionUSD ${cap:.2f}",
            )
        return None

    def check_daily_usd(self, usd_value: float, spent_today_usd: float) -> Optional[PolicyViolation]:
        cap = self.policy.max_daily_exposure_usd
        if cap is None:
            return None
        projected = spent_today_usd + usd_value
        if projected > cap:
            return PolicyViolation(
                code="DAILY_USD_LIMIT_EXCEEDED",
                message=f"projected daily USD exposure ${projected:.2f} exceeds maxDailyExposureUSD ${cap:.2f}",
            )
        return None

    def check_portfolio_exposure(self, usd_value: float, portfolio_usd: float) -> Optional[PolicyViolation]:
        max_pct = self.policy.max_portfolio_exposure_percentage
        if max_pct is None or portfolio_usd == 0:
            return None
        pct = (usd_value / portfolio_usd) * 100
        if pct > max_pct:
            return PolicyViolation(
                code="PORTFOLIO_EXPOSURE_TOO_HIGH",
                message=(
                    f"transaction is {pct:.1f}% of portfolio, exceeds "
                    f"maxPortfolioExposurePercentage {format_number(max_pct)}%"
                ),
            )
        return None

    def check_drawdown(self, portfolio_usd: float, peak_portfolio_usd: float) -> Optional[PolicyViolation]:
        cap = self.policy.max_drawdown_usd
        if cap is None or peak_portfolio_usd == 0:
            return None
        drawdown = peak_portfolio_usd - portfolio_usd
        if drawdown > cap:
            return PolicyViolation(
                code="DRAWDOWN_LIMIT_EXCEEDED",
                message=f"portfolio drawdown ${drawdown:.2f} exceeds maxDrawdownUSD ${cap:.2f}",
            )
        return None

    def evaluate(
        self,
        usd_value: float,
        *,
        portfolio_usd: float,
        spent_today_usd: float,
        peak_portfolio_usd: float,
    ) -> list[Optional[PolicyViolation]]:
        return [
            self.check_tx_usd(usd_value),
            self.check_daily_usd(usd_value, spent_today_usd),
            self.check_portfolio_exposure(usd_value, portfolio_usd),
            self.check_drawdown(portfolio_usd, peak_portfolio_usd),
        ]

    def enforce(self, violations: Iterable[Optional[PolicyViolation]]) -> None:
        actual = [v for v in violations if v is not None]
        if actual:
            logger.warning(
                "USD policy violations",
                agent_id=self.agent_id,
                codes=[v.code for v in actual],
            )
            raise USDPolicyError(actual)

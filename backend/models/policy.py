from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_ALLOWED_INTENTS = ["transfer", "swap"]
DEFAULT_ALLOWED_MINTS = ["SOL", "USDC"]


class AgentPolicy(BaseModel):
    """Native-asset (SOL) guardrails attached to an agent.

    Field names on the wire are camelCase; the same camelCase document is what
    gets content-hashed into the policy version history.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    allowed_intents: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_INTENTS), alias="allowedIntents"
    )
    allowed_mints: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_MINTS), alias="allowedMints"
    )
    max_tx_amount_sol: float = Field(default=1.0, ge=0, alias="maxTxAmountSOL")
    daily_spend_limit_sol: float = Field(default=5.0, ge=0, alias="dailySpendLimitSOL")
    max_slippage_bps: int = Field(default=100, ge=0, le=10_000, alias="maxSlippageBps")
    require_simulation: bool = Field(default=True, alias="requireSimulation")
    cooldown_ms: Optional[int] = Field(default=None, ge=0, alias="cooldownMs")
    max_risk_score: Optional[float] = Field(default=None, ge=0, le=100, alias="maxRiskScore")

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def merged(self, overrides: dict[str, Any]) -> "AgentPolicy":
        """Return a copy with camelCase ``overrides`` applied on top."""
        return AgentPolicy.model_validate({**self.to_document(), **overrides})


class USDPolicy(BaseModel):
    """Fiat-denominated guardrails. Every field is opt-in; unset skips the check."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    max_transaction_usd: Optional[float] = Field(default=None, ge=0, alias="maxTransactionUSD")
    max_daily_exposure_usd: Optional[float] = Field(default=None, ge=0, alias="maxDailyExposureUSD")
    max_portfolio_exposure_percentage: Optional[float] = Field(
        default=None, ge=0, le=100, alias="maxPortfolioExposurePercentage"
    )
    max_drawdown_usd: Optional[float] = Field(default=None, ge=0, alias="maxDrawdownUSD")

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Intent(BaseModel):
    """A typed request for the agent wallet to act; params are handler-specific."""

    type: str = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)

    @field_validator("type")
    @classmethod
    def _strip_type(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("intent type must not be blank")
        return value

    def to_document(self) -> dict[str, Any]:
        return {"type": self.type, "params": dict(self.params)}


class PolicyViolation(BaseModel):
    code: str
    message: str

    def render(self) -> str:
        return f"[{self.code}] {self.message}"


class ImpactEstimate(BaseModel):
    """Handler forecast of native exposure and riskiness, computed offline."""

    amount_sol: float = Field(default=0.0, ge=0)
    mint: str
    risk_score: float = Field(default=0.0)
    slippage_bps: Optional[int] = None  # only swap-like intents carry one

    @field_validator("risk_score")
    @classmethod
    def _clamp_risk(cls, value: float) -> float:
        return max(0.0, min(100.0, float(value)))

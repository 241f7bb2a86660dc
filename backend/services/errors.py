"""Error taxonomy shared by the pipeline services and the HTTP layer."""

from __future__ import annotations

from typing import Any, Iterable, Optional

from models.policy import PolicyViolation


class AegisError(Exception):
    status_code = 500
    error = "internal error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.error)
        self.message = message or self.error

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message}


class ValidationError(AegisError):
    status_code = 400
    error = "validation failed"

    def __init__(self, message: Optional[str] = None, errors: Optional[Iterable[str]] = None):
        self.errors = list(errors or [])
        if message is None and self.errors:
            message = "; ".join(self.errors)
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.errors:
            data["errors"] = self.errors
        return data


class NotFoundError(AegisError):
    status_code = 404
    error = "not found"


class ForbiddenError(AegisError):
    status_code = 403
    error = "forbidden"


class UnauthorizedError(AegisError):
    status_code = 401
    error = "unauthorized"


class ExpiredError(AegisError):
    status_code = 410
    error = "pending transaction has expired"


class ConflictError(AegisError):
    status_code = 409
    error = "conflict"


class BuildError(AegisError):
    status_code = 502
    error = "transaction build failed"


class ExecutionError(AegisError):
    status_code = 502
    error = "execution failed"


class SimulationFailure(AegisError):
    """The dry-run itself reported an error."""

    status_code = 422
    error = "simulation failed"

    def __init__(self, message: Optional[str] = None, logs: Optional[list[str]] = None):
        super().__init__(message)
        self.logs = list(logs or [])

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error, "simulationError": self.message, "logs": self.logs}


class SimulationRiskFlag(SimulationFailure):
    """The dry-run succeeded but its effects are unsafe."""

    error = "simulation flagged risky effects"

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error, "riskReason": self.message, "logs": self.logs}


class PolicyError(AegisError):
    status_code = 403
    error = "policy violation"

    def __init__(self, violations: Iterable[PolicyViolation]):
        self.violations = list(violations)
        super().__init__("; ".join(v.render() for v in self.violations))

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.error,
            "violations": [v.model_dump() for v in self.violations],
        }


class USDPolicyError(PolicyError):
    error = "usd policy violation"

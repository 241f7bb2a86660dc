import logging
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

# Get the directory where this config file is located.
_BACKEND_DIR = Path(__file__).parent.resolve()


def _detect_project_root(backend_dir: Path) -> Path:
    """Resolve project root from the backend directory in the repo layout."""
    return backend_dir.parent.resolve()


_PROJECT_ROOT = _detect_project_root(_BACKEND_DIR)
_DEFAULT_DB_PATH = (_PROJECT_ROOT / "data" / "aegis.db").resolve()
_SQLITE_ASYNC_PREFIX = "sqlite+aiosqlite:///"
_SQLITE_SYNC_PREFIX = "sqlite:///"
_LOGGER = logging.getLogger(__name__)


class Settings(BaseSettings):
    # Ledger RPC
    RPC_URL: str = "https://api.devnet.solana.com"
    RPC_COMMITMENT: str = "confirmed"
    LEDGER_READ_TIMEOUT_SECONDS: float = 10.0
    LEDGER_SIMULATE_TIMEOUT_SECONDS: float = 15.0
    LEDGER_SUBMIT_TIMEOUT_SECONDS: float = 45.0  # Unconfirmed after this = failed, never resubmitted
    MAX_RETRY_ATTEMPTS: int = 3  # Read-only RPC calls only
    RETRY_BASE_DELAY: float = 0.5

    # Swap routing
    JUPITER_API_URL: str = "https://quote-api.jup.ag/v6"

    # Price Oracle
    PYTH_HERMES_URL: str = "https://hermes.pyth.network/v2/updates/price/latest"
    COINGECKO_API_URL: str = "https://api.coingecko.com/api/v3"
    PYTH_TIMEOUT_SECONDS: float = 5.0
    COINGECKO_TIMEOUT_SECONDS: float = 8.0
    ORACLE_CACHE_TTL_SECONDS: float = 30.0

    # Human-in-the-loop approvals
    PENDING_TTL_HOURS: int = 24
    HITL_SWEEP_INTERVAL_SECONDS: int = 300

    # Webhooks / funding alerts
    WEBHOOK_TIMEOUT_SECONDS: float = 5.0
    DEFAULT_MIN_OPERATIONAL_USD: float = 5.0

    # Simulation risk analysis
    SOL_FLOOR_LAMPORTS: int = 10_000_000  # 0.01 SOL operational floor
    COMPUTE_UNIT_BUFFER_PCT: float = 0.10
    EXPECTED_DELTA_TOLERANCE_PCT: float = 5.0

    # Reputation (bounded 0..10)
    REPUTATION_INITIAL: float = 1.0
    REPUTATION_SUCCESS_DELTA: float = 0.1
    REPUTATION_POLICY_PENALTY: float = -0.2
    REPUTATION_SIMULATION_PENALTY: float = -0.1

    # Credentials
    API_KEY_BCRYPT_ROUNDS: int = 10
    APP_SECRETS_KEY: Optional[str] = None  # Encrypts wallet secrets at rest

    # Database - canonical path under project-root data directory
    DATABASE_URL: str = f"sqlite+aiosqlite:///{_DEFAULT_DB_PATH}"

    # Production Settings
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    LOG_FILE: Optional[str] = None
    CORS_ORIGINS: list[str] = ["*"]

    @field_validator(
        "RPC_URL",
        "JUPITER_API_URL",
        "PYTH_HERMES_URL",
        "COINGECKO_API_URL",
        mode="before",
    )
    @classmethod
    def _normalize_url_field(cls, value: object) -> object:
        """Trim accidental quotes/whitespace from URL env vars."""
        if value is None:
            return value
        text = str(value).strip().strip('"').strip("'")
        if not text:
            return text
        return text.rstrip("/")

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def _normalize_database_url(cls, value: object) -> object:
        """Normalize DB URL so worker/API cwd changes never split databases."""
        if value is None:
            return value

        text = str(value).strip().strip('"').strip("'")
        if not text:
            return text

        # Convert relative SQLite paths to absolute project-root paths.
        for prefix in (_SQLITE_ASYNC_PREFIX, _SQLITE_SYNC_PREFIX):
            if not text.startswith(prefix):
                continue
            path_part = text[len(prefix) :]
            if not path_part:
                return text
            if path_part in {":memory:", "/:memory:"}:
                return f"{prefix}:memory:"
            absolute = Path(path_part).resolve() if path_part.startswith("/") else (_PROJECT_ROOT / path_part).resolve()
            try:
                absolute.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                _LOGGER.warning(
                    "Could not create SQLite data directory",
                    extra={"path": str(absolute.parent), "error": str(exc)},
                )
            return f"{prefix}{absolute}"

        return text

    class Config:
        # Load project-root .env first (common workflow), then backend/.env
        # as an override if present.
        env_file = (
            str(_PROJECT_ROOT / ".env"),
            str(_BACKEND_DIR / ".env"),
        )
        env_file_encoding = "utf-8"


settings = Settings()

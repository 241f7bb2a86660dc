from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    event,
)
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker
import enum
import logging

from config import settings
from models.types import PreciseFloat as Float
from utils.utcnow import utcnow

logger = logging.getLogger(__name__)

Base = declarative_base()


class AgentStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    SUSPENDED = "suspended"


class ExecutionMode(str, enum.Enum):
    AUTONOMOUS = "autonomous"
    SUPERVISED = "supervised"  # Every eligible intent waits for human approval


class TransactionStatus(str, enum.Enum):
    CONFIRMED = "confirmed"
    PENDING_APPROVAL = "pending_approval"
    REJECTED_POLICY = "rejected_policy"
    REJECTED_SIMULATION = "rejected_simulation"
    FAILED = "failed"


class PendingStatus(str, enum.Enum):
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class ApprovalState(str, enum.Enum):
    AUTO = "auto"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class CapitalEventType(str, enum.Enum):
    FUNDING = "funding"
    PNL_SNAPSHOT = "pnl_snapshot"


# ==================== AGENTS ====================


class Agent(Base):
    """Custodied wallet identity operated by an autonomous agent."""

    __tablename__ = "agents"

    id = Column(String, primary_key=True)
    public_key = Column(String, nullable=False, unique=True)
    wallet_secret = Column(Text, nullable=False)  # keystore-encrypted secret key
    api_key_hash = Column(String, nullable=False)
    policy_json = Column(JSON, nullable=False, default=dict)
    usd_policy_json = Column(JSON, nullable=True)
    status = Column(String, nullable=False, default=AgentStatus.ACTIVE.value)
    execution_mode = Column(String, nullable=False, default=ExecutionMode.AUTONOMOUS.value)
    reputation_score = Column(Float, nullable=False, default=1.0)
    min_operational_usd = Column(Float, nullable=True)
    webhook_url = Column(Text, nullable=True)
    last_activity_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (Index("idx_agents_created", "created_at"),)


class PolicyVersion(Base):
    """Append-only history of every distinct native policy put in force."""

    __tablename__ = "policy_versions"

    agent_id = Column(String, ForeignKey("agents.id", ondelete="CASCADE"), primary_key=True)
    version = Column(Integer, primary_key=True)
    policy_hash = Column(String, nullable=False)
    policy_json = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


# ==================== EXECUTION RECORDS ====================


class AgentTransaction(Base):
    """One row per execution attempt, including rejected and failed ones."""

    __tablename__ = "agent_transactions"

    id = Column(String, primary_key=True)
    agent_id = Column(String, ForeignKey("agents.id"), nullable=False, index=True)
    intent_type = Column(String, nullable=False)
    reasoning = Column(Text, nullable=True)
    signature = Column(String, nullable=True)
    slot = Column(Integer, nullable=True)
    amount = Column(Float, nullable=True)
    token_mint = Column(String, nullable=True)
    status = Column(String, nullable=False)
    policy_hash = Column(String, nullable=True)
    policy_version = Column(Integer, nullable=False, default=1)
    intent_hash = Column(String, nullable=True)
    usd_value = Column(Float, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_agent_transactions_agent_created", "agent_id", "created_at"),
        Index("idx_agent_transactions_status", "status"),
    )


class SpendTracking(Base):
    """Per-agent, per-UTC-day running totals and the peak portfolio watermark."""

    __tablename__ = "spend_tracking"

    agent_id = Column(String, ForeignKey("agents.id"), primary_key=True)
    date = Column(String, primary_key=True)  # YYYY-MM-DD (UTC)
    total_spent_sol = Column(Float, nullable=False, default=0.0)
    total_spent_usdc = Column(Float, nullable=False, default=0.0)
    total_spent_usd = Column(Float, nullable=False, default=0.0)
    peak_portfolio_usd = Column(Float, nullable=False, default=0.0)


class CapitalEvent(Base):
    """Funding injections and realized PnL snapshots (append-only)."""

    __tablename__ = "capital_events"

    id = Column(String, primary_key=True)
    agent_id = Column(String, ForeignKey("agents.id"), nullable=False, index=True)
    event_type = Column(String, nullable=False)
    amount_sol = Column(Float, nullable=True)
    amount_usd = Column(Float, nullable=True)
    source_note = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


# ==================== HUMAN-IN-THE-LOOP ====================


class PendingTransaction(Base):
    """Transaction held for human sign-off while the agent runs supervised."""

    __tablename__ = "pending_transactions"

    id = Column(String, primary_key=True)
    agent_id = Column(String, ForeignKey("agents.id"), nullable=False, index=True)
    intent_json = Column(JSON, nullable=False)
    intent_hash = Column(String, nullable=False)
    policy_hash = Column(String, nullable=False)
    reasoning = Column(Text, nullable=True)
    usd_value = Column(Float, nullable=True)
    simulation_json = Column(JSON, nullable=True)
    status = Column(String, nullable=False, default=PendingStatus.AWAITING_APPROVAL.value)
    expires_at = Column(DateTime, nullable=False)
    webhook_notified = Column(Boolean, nullable=False, default=False)
    resolved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_pending_status_expires", "status", "expires_at"),)


# ==================== AUDIT ====================


class AuditLog(Base):
    """Immutable decision record; rows are inserted once and never updated."""

    __tablename__ = "audit_log"

    id = Column(String, primary_key=True)
    agent_id = Column(String, ForeignKey("agents.id"), nullable=False, index=True)
    intent_hash = Column(String, nullable=False)
    policy_hash = Column(String, nullable=False)
    intent_json = Column(JSON, nullable=False)
    usd_risk_check_json = Column(JSON, nullable=True)
    simulation_json = Column(JSON, nullable=True)
    approval_state = Column(String, nullable=False)
    final_tx_signature = Column(String, nullable=True)
    pending_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_audit_agent_created", "agent_id", "created_at"),)


# ==================== DATABASE SETUP ====================

_engine_kw: dict = {"echo": False}
if "sqlite" in settings.DATABASE_URL:
    _engine_kw["connect_args"] = {"timeout": 30}  # Wait up to 30s when DB is locked

async_engine = create_async_engine(settings.DATABASE_URL, **_engine_kw)


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Configure SQLite for concurrent access (WAL mode, busy timeout)."""
    if "sqlite" not in settings.DATABASE_URL:
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.close()


event.listens_for(async_engine.sync_engine, "connect")(_set_sqlite_pragma)

AsyncSessionLocal = sessionmaker(
    async_engine, class_=AsyncSession, expire_on_commit=False
)


async def init_database(engine=None):
    """Create every table that does not exist yet."""
    target = engine or async_engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready")



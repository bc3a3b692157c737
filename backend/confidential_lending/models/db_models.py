"""
Confidential Lending - SQLAlchemy ORM Models
PostgreSQL database models for persistent storage
"""
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, String, Integer, DateTime, Text, JSON, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from ..database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns below."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid4())


# =============================================================================
# ENUMS
# =============================================================================

class UserRole(str, Enum):
    """Closed set of caller roles. Capabilities are checked per operation."""
    BORROWER = "borrower"
    LENDER = "lender"
    ADMIN = "admin"


class ScoreStatus(str, Enum):
    """Lifecycle of an encrypted credit score."""
    PENDING = "pending"
    COMPUTED = "computed"
    DECRYPTED = "decrypted"


class RiskTier(str, Enum):
    """Coarse risk classification; the only score-derived signal a lender sees."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class LoanStatus(str, Enum):
    """States in the loan lifecycle."""
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    ACTIVE = "active"
    REPAID = "repaid"


class CoprocessorState(str, Enum):
    """Operational state of the confidential-computation coprocessor."""
    ACTIVE = "active"
    DEGRADED = "degraded"
    OFFLINE = "offline"


class AuditAction(str, Enum):
    """Action names written to the audit trail."""
    USER_CREATED = "USER_CREATED"
    ROLE_CHANGED = "ROLE_CHANGED"
    DATA_SUBMITTED = "DATA_SUBMITTED"
    SCORE_COMPUTED = "SCORE_COMPUTED"
    SCORE_DECRYPTED = "SCORE_DECRYPTED"
    LOAN_REQUESTED = "LOAN_REQUESTED"
    LOAN_APPROVED = "LOAN_APPROVED"
    LOAN_DENIED = "LOAN_DENIED"
    LOAN_FUNDED = "LOAN_FUNDED"
    LOAN_REPAID = "LOAN_REPAID"
    COPROCESSOR_STATUS_UPDATED = "COPROCESSOR_STATUS_UPDATED"
    KEY_ROTATION = "KEY_ROTATION"
    AUDIT_NOTE = "AUDIT_NOTE"


# =============================================================================
# TABLES
# =============================================================================
#
# Append-only and ordered entities carry an integer `seq` primary key next to
# their public UUID `id`. "Most recent" always means highest (timestamp, seq).
#

class UserDB(Base):
    """Wallet-keyed user account."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)  # UUID
    wallet_address = Column(String(42), unique=True, nullable=False, index=True)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.BORROWER)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    submissions = relationship("EncryptedSubmissionDB", back_populates="user")
    credit_scores = relationship("CreditScoreDB", back_populates="user")


class EncryptedSubmissionDB(Base):
    """Immutable submission of three encrypted financial indicators."""
    __tablename__ = "encrypted_submissions"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), unique=True, nullable=False, index=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    # Opaque handles, persisted verbatim and never decoded at rest
    salary_handle = Column(Text, nullable=False)
    debts_handle = Column(Text, nullable=False)
    expenses_handle = Column(Text, nullable=False)

    submitted_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    user = relationship("UserDB", back_populates="submissions")


class CreditScoreDB(Base):
    """Encrypted credit score. Superseded by newer rows, never deleted."""
    __tablename__ = "credit_scores"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), unique=True, nullable=False, index=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    submission_id = Column(String(36), ForeignKey("encrypted_submissions.id"), nullable=True)

    score_handle = Column(Text, nullable=False)
    status = Column(SQLEnum(ScoreStatus), nullable=False, default=ScoreStatus.PENDING)
    computed_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    user = relationship("UserDB", back_populates="credit_scores")


class LoanDB(Base):
    """Loan application. Amounts are integer minor units (cents)."""
    __tablename__ = "loans"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), unique=True, nullable=False, index=True, default=new_id)
    borrower_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    lender_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)

    requested_amount = Column(Integer, nullable=False)
    approved_amount = Column(Integer, nullable=True)
    term_days = Column(Integer, nullable=False)

    # Frozen at application time from the borrower's then-current score
    risk_tier = Column(SQLEnum(RiskTier), nullable=False)
    credit_score_id = Column(String(36), ForeignKey("credit_scores.id"), nullable=True)

    status = Column(SQLEnum(LoanStatus), nullable=False, default=LoanStatus.PENDING, index=True)
    decision_handle = Column(Text, nullable=True)  # Encrypted approval decision

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)


class AuditEntryDB(Base):
    """
    Immutable record of every successful mutation.
    Everything is timestamped and cannot be modified.
    """
    __tablename__ = "audit_entries"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), unique=True, nullable=False, index=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)  # NULL = system

    action = Column(String(50), nullable=False, index=True)
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(String(36), nullable=True)

    # Event Metadata (named to avoid 'metadata', which is reserved in SQLAlchemy)
    event_metadata = Column(JSON, nullable=True)

    timestamp = Column(DateTime, default=utcnow, nullable=False)


class CoprocessorStatusDB(Base):
    """Single-row operational telemetry for the coprocessor."""
    __tablename__ = "coprocessor_status"

    SINGLETON_ID = "coprocessor"

    id = Column(String(36), primary_key=True, default=SINGLETON_ID)
    status = Column(SQLEnum(CoprocessorState), nullable=False, default=CoprocessorState.ACTIVE)
    last_key_rotation = Column(DateTime, nullable=True)
    total_computations = Column(Integer, nullable=False, default=0)
    average_latency_ms = Column(Integer, nullable=True)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

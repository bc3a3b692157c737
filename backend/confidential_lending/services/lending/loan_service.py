"""
Loan Service

Orchestrates the loan lifecycle: application, lender decision, funding and
repayment, plus role-scoped reads.

AUTHORITY MODEL (entry_role in the state machine's STATE_CONFIG):
- BORROWER: apply (needs a credit score), repay own active loans
- LENDER:   approve / deny pending loans, fund loans they approved
- ADMIN:    read everything

Every successful mutation commits together with exactly one audit entry.
Rejected calls roll back and leave the audit trail untouched.

RISK TIER:
Captured from the borrower's current score when the loan is created and
frozen. A newer score does not reclassify existing loans.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models.db_models import LoanDB, LoanStatus, UserDB, UserRole, AuditAction
from ..errors import (
    InvalidStateError, NoScoreError, NotFoundError, PermissionDeniedError, ValidationError,
)
from ..scoring import handle_codec
from ..scoring.risk_classifier import classify
from ..scoring.submission_service import SubmissionService
from ..telemetry.audit_trail import AuditTrailService
from ..users import UserService, require_role
from .lender_stats import FUNDED_STATUSES, LenderStats, get_lender_stats
from .state_machine import LoanStateMachine

logger = logging.getLogger(__name__)

DECISION_APPROVED = 1
DECISION_DENIED = 0


def _require_positive_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{name} must be a positive integer")
    return value


class LoanService:
    """Loan lifecycle operations."""

    def __init__(self, db_session: Session):
        self.db = db_session
        self.users = UserService(db_session)
        self.scores = SubmissionService(db_session)
        self.audit = AuditTrailService(db_session)
        self.state_machine = LoanStateMachine(db_session)

    # =========================================================================
    # APPLICATION
    # =========================================================================

    def apply(self, borrower_id: str, amount: int, term_days: int) -> LoanDB:
        """
        Create a pending loan for the borrower.

        Args:
            borrower_id: Applying user
            amount: Requested principal in minor units
            term_days: Requested term

        Raises:
            NotFoundError, PermissionDeniedError, ValidationError, NoScoreError
        """
        borrower = self._require_entry_role(borrower_id, LoanStatus.PENDING)
        _require_positive_int(amount, "amount")
        _require_positive_int(term_days, "term_days")

        credit_score = self.scores.current_score(borrower.id)
        if credit_score is None:
            raise NoScoreError("Submit financial data first to get a credit score")

        risk_tier = classify(credit_score.score_handle)

        loan = LoanDB(
            borrower_id=borrower.id,
            requested_amount=amount,
            term_days=term_days,
            risk_tier=risk_tier,
            credit_score_id=credit_score.id,
            status=LoanStatus.PENDING,
        )
        self.db.add(loan)
        self.db.flush()

        self.audit.record(
            AuditAction.LOAN_REQUESTED,
            user_id=borrower.id,
            entity_type="loan",
            entity_id=loan.id,
            metadata={"amount": amount, "term_days": term_days, "risk_tier": risk_tier.value},
        )
        self.db.commit()

        logger.info(f"Loan {loan.id} requested by {borrower.id}: {amount} for {term_days} days ({risk_tier.value})")
        return loan

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def _require_entry_role(self, acting_user_id: str, to_state: LoanStatus) -> UserDB:
        """The actor must exist and hold the role allowed to move a loan into to_state."""
        user = self.users.require_user(acting_user_id)
        return require_role(user, self.state_machine.entry_role(to_state))

    def _load_loan(self, loan_id: str) -> LoanDB:
        loan = self.db.query(LoanDB).filter(LoanDB.id == loan_id).first()
        if loan is None:
            raise NotFoundError("Loan not found")
        return loan

    def _transition(
        self,
        loan: LoanDB,
        actor: UserDB,
        from_state: LoanStatus,
        to_state: LoanStatus,
        metadata: Optional[Dict[str, Any]] = None,
        **values,
    ) -> LoanDB:
        loan_id = loan.id
        success, message = self.state_machine.transition(loan_id, from_state, to_state, **values)
        if not success:
            self.db.rollback()
            current = self._load_loan(loan_id).status
            logger.warning(f"Rejected {to_state.value} on loan {loan_id} by {actor.id}: {message}")
            raise InvalidStateError(
                f"Cannot move loan from {current.value} to {to_state.value}"
            )

        self.audit.record(
            self.state_machine.audit_action(to_state),
            user_id=actor.id,
            entity_type="loan",
            entity_id=loan_id,
            metadata=metadata,
        )
        self.db.commit()
        self.db.refresh(loan)

        logger.info(f"Loan {loan_id} {from_state.value} -> {to_state.value} by {actor.id}")
        return loan

    def approve(self, loan_id: str, acting_user_id: str, approved_amount: Optional[int] = None) -> LoanDB:
        """
        Approve a pending loan. The acting lender becomes the loan's lender.

        approved_amount defaults to the requested amount and may not exceed it.
        """
        lender = self._require_entry_role(acting_user_id, LoanStatus.APPROVED)
        loan = self._load_loan(loan_id)

        if approved_amount is None:
            approved_amount = loan.requested_amount
        _require_positive_int(approved_amount, "approved_amount")
        if approved_amount > loan.requested_amount:
            raise ValidationError("approved_amount cannot exceed the requested amount")

        return self._transition(
            loan,
            lender,
            LoanStatus.PENDING,
            LoanStatus.APPROVED,
            metadata={"approved_amount": approved_amount},
            lender_id=lender.id,
            approved_amount=approved_amount,
            decision_handle=handle_codec.encode(DECISION_APPROVED),
        )

    def deny(self, loan_id: str, acting_user_id: str) -> LoanDB:
        """Deny a pending loan. Denied is terminal."""
        lender = self._require_entry_role(acting_user_id, LoanStatus.DENIED)
        loan = self._load_loan(loan_id)

        return self._transition(
            loan,
            lender,
            LoanStatus.PENDING,
            LoanStatus.DENIED,
            decision_handle=handle_codec.encode(DECISION_DENIED),
        )

    def fund(self, loan_id: str, acting_user_id: str) -> LoanDB:
        """Disburse an approved loan. Only its approving lender may fund it."""
        lender = self._require_entry_role(acting_user_id, LoanStatus.ACTIVE)
        loan = self._load_loan(loan_id)
        if loan.lender_id != lender.id:
            raise PermissionDeniedError("Only the approving lender may fund this loan")

        return self._transition(
            loan,
            lender,
            LoanStatus.APPROVED,
            LoanStatus.ACTIVE,
            metadata={"amount": loan.approved_amount},
        )

    def repay(self, loan_id: str, acting_user_id: str) -> LoanDB:
        """Mark an active loan repaid. Only its borrower, still holding the borrower role, may repay it."""
        borrower = self._require_entry_role(acting_user_id, LoanStatus.REPAID)
        loan = self._load_loan(loan_id)
        if loan.borrower_id != borrower.id:
            raise PermissionDeniedError("Only the borrower may repay this loan")

        return self._transition(loan, borrower, LoanStatus.ACTIVE, LoanStatus.REPAID)

    # =========================================================================
    # READS (role-scoped, most recent first)
    # =========================================================================

    def _scoped_query(self, viewer: Optional[UserDB]):
        if viewer is None:
            return None
        q = self.db.query(LoanDB)
        if viewer.role == UserRole.ADMIN:
            return q
        if viewer.role == UserRole.LENDER:
            return q.filter(or_(LoanDB.status == LoanStatus.PENDING, LoanDB.lender_id == viewer.id))
        return q.filter(LoanDB.borrower_id == viewer.id)

    @staticmethod
    def _newest_first(q):
        return q.order_by(LoanDB.created_at.desc(), LoanDB.seq.desc())

    def list_loans(self, viewer: Optional[UserDB]) -> List[LoanDB]:
        q = self._scoped_query(viewer)
        if q is None:
            return []
        return self._newest_first(q).all()

    def get_loan(self, loan_id: str, viewer: Optional[UserDB]) -> LoanDB:
        """A single loan, if the viewer is allowed to see it."""
        q = self._scoped_query(viewer)
        loan = q.filter(LoanDB.id == loan_id).first() if q is not None else None
        if loan is None:
            raise NotFoundError("Loan not found")
        return loan

    def list_pending(self) -> List[LoanDB]:
        return self._newest_first(
            self.db.query(LoanDB).filter(LoanDB.status == LoanStatus.PENDING)
        ).all()

    def list_funded(self, lender_id: str) -> List[LoanDB]:
        return self._newest_first(
            self.db.query(LoanDB).filter(
                LoanDB.lender_id == lender_id,
                LoanDB.status.in_(FUNDED_STATUSES),
            )
        ).all()

    def get_lender_stats(self, lender_id: str) -> LenderStats:
        lender = require_role(self.users.require_user(lender_id), UserRole.LENDER)
        return get_lender_stats(self.db, lender.id)

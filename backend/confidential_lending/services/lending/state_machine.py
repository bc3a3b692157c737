"""
Loan State Machine

Deterministic lifecycle for loan applications:

    PENDING -> APPROVED -> ACTIVE -> REPAID
            -> DENIED

States only move forward along the edges above. DENIED and REPAID are
terminal.

Every transition is a single conditional UPDATE keyed on the loan id and
the expected prior status (compare-and-swap). Of two writers racing from
the same state, exactly one matches a row; the other sees rowcount 0.
"""
from typing import Any, Dict, List, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from ...models.db_models import LoanDB, LoanStatus, UserRole, AuditAction, utcnow


# =============================================================================
# STATE CONFIGURATION
# =============================================================================
#
# entry_role: which role may move a loan INTO the state
# action:     audit action recorded when the state is entered
#

STATE_CONFIG = {
    LoanStatus.PENDING: {
        "description": "Application submitted, awaiting a lender decision",
        "allowed_transitions": [LoanStatus.APPROVED, LoanStatus.DENIED],
        "entry_role": UserRole.BORROWER,
        "action": AuditAction.LOAN_REQUESTED,
    },
    LoanStatus.APPROVED: {
        "description": "Approved by a lender, awaiting funding",
        "allowed_transitions": [LoanStatus.ACTIVE],
        "entry_role": UserRole.LENDER,
        "action": AuditAction.LOAN_APPROVED,
    },
    LoanStatus.DENIED: {
        "description": "Denied by a lender",
        "allowed_transitions": [],  # Terminal state
        "entry_role": UserRole.LENDER,
        "action": AuditAction.LOAN_DENIED,
    },
    LoanStatus.ACTIVE: {
        "description": "Funded and outstanding",
        "allowed_transitions": [LoanStatus.REPAID],
        "entry_role": UserRole.LENDER,
        "action": AuditAction.LOAN_FUNDED,
    },
    LoanStatus.REPAID: {
        "description": "Repaid by the borrower",
        "allowed_transitions": [],  # Terminal state
        "entry_role": UserRole.BORROWER,
        "action": AuditAction.LOAN_REPAID,
    },
}


class LoanStateMachine:
    """Transition rules plus the atomic conditional write that applies them."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_state_config(self, state: LoanStatus) -> Dict[str, Any]:
        return STATE_CONFIG.get(state, {})

    def can_transition(self, from_state: LoanStatus, to_state: LoanStatus) -> Tuple[bool, str]:
        """
        Check if a state transition is allowed.

        Returns (allowed, reason)
        """
        config = self.get_state_config(from_state)
        if to_state in config.get("allowed_transitions", []):
            return True, "Transition allowed"
        return False, f"Cannot transition from {from_state.value} to {to_state.value}"

    def is_terminal_state(self, state: LoanStatus) -> bool:
        return len(self.get_state_config(state).get("allowed_transitions", [])) == 0

    def get_next_states(self, state: LoanStatus) -> List[LoanStatus]:
        return self.get_state_config(state).get("allowed_transitions", [])

    def entry_role(self, state: LoanStatus) -> UserRole:
        return self.get_state_config(state)["entry_role"]

    def audit_action(self, state: LoanStatus) -> AuditAction:
        return self.get_state_config(state)["action"]

    def transition(
        self,
        loan_id: str,
        from_state: LoanStatus,
        to_state: LoanStatus,
        **values,
    ) -> Tuple[bool, str]:
        """
        Compare-and-swap the loan from from_state to to_state.

        Extra column values are written in the same UPDATE.

        Returns (success, message). success is False when the edge is not
        allowed or the loan is no longer in from_state.
        """
        allowed, reason = self.can_transition(from_state, to_state)
        if not allowed:
            return False, reason

        stmt = (
            update(LoanDB)
            .where(LoanDB.id == loan_id, LoanDB.status == from_state)
            .values(status=to_state, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        if result.rowcount != 1:
            return False, f"Loan is no longer {from_state.value}"

        return True, f"Transitioned to {to_state.value}"

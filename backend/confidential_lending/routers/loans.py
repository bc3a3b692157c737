"""
Confidential Lending - Loans Router

Loan applications, lender decisions, funding, repayment and lender
portfolio statistics.

State changes:
- PUT /loans/{id}/approve : PENDING  -> APPROVED (lender)
- PUT /loans/{id}/deny    : PENDING  -> DENIED   (lender)
- PUT /loans/{id}/fund    : APPROVED -> ACTIVE   (approving lender)
- PUT /loans/{id}/repay   : ACTIVE   -> REPAID   (borrower)

A transition that lost a race or starts from the wrong state returns 409.
"""
from datetime import datetime
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import LoanDB, UserDB, UserRole
from ..auth import get_current_user, get_optional_user, require_lender
from ..services.errors import LendingError
from ..services.lending import LoanService
from ..services.users import require_role
from .errors import http_error

logger = logging.getLogger(__name__)

router = APIRouter(tags=["loans"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class LoanApplicationRequest(BaseModel):
    requested_amount: int = Field(..., description="Principal in minor units (cents)")
    term_days: int = Field(..., description="Requested term in days")


class ApproveRequest(BaseModel):
    approved_amount: Optional[int] = Field(None, description="Defaults to the requested amount")


class LoanResponse(BaseModel):
    id: str
    borrower_id: str
    lender_id: Optional[str] = None
    requested_amount: int
    approved_amount: Optional[int] = None
    term_days: int
    risk_tier: str
    status: str
    decision_handle: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class LoanEnvelope(BaseModel):
    loan: LoanResponse


class LoanListResponse(BaseModel):
    loans: List[LoanResponse]


class LenderStatsResponse(BaseModel):
    total_funded: int
    active_loans: int
    repaid_loans: int
    decided_loans: int
    average_yield_pct: float
    default_rate_pct: float


def loan_response(loan: LoanDB) -> LoanResponse:
    return LoanResponse(
        id=loan.id,
        borrower_id=loan.borrower_id,
        lender_id=loan.lender_id,
        requested_amount=loan.requested_amount,
        approved_amount=loan.approved_amount,
        term_days=loan.term_days,
        risk_tier=loan.risk_tier.value,
        status=loan.status.value,
        decision_handle=loan.decision_handle,
        created_at=loan.created_at,
        updated_at=loan.updated_at,
    )


def _loan_list(loans: List[LoanDB]) -> LoanListResponse:
    return LoanListResponse(loans=[loan_response(loan) for loan in loans])


# =============================================================================
# APPLICATION & READS
# =============================================================================

@router.post("/loans", response_model=LoanEnvelope)
async def apply_for_loan(
    request: LoanApplicationRequest,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """
    Apply for a loan. The risk tier is taken from the caller's current
    credit score and frozen on the loan.
    """
    try:
        loan = LoanService(db).apply(current_user.id, request.requested_amount, request.term_days)
    except LendingError as e:
        raise http_error(e)
    return LoanEnvelope(loan=loan_response(loan))


@router.get("/loans", response_model=LoanListResponse)
async def list_loans(
    db: Session = Depends(get_db),
    current_user: Optional[UserDB] = Depends(get_optional_user),
):
    """
    Role-scoped loan list, most recent first.
    - Borrower: own loans
    - Lender: all pending loans plus loans they decided
    - Admin: everything
    """
    return _loan_list(LoanService(db).list_loans(current_user))


@router.get("/loans/pending", response_model=LoanListResponse)
async def list_pending_loans(
    db: Session = Depends(get_db),
    current_user: Optional[UserDB] = Depends(get_optional_user),
):
    """Pending loan requests awaiting a decision (lenders and admins)."""
    try:
        require_role(current_user, UserRole.LENDER, UserRole.ADMIN)
    except LendingError as e:
        raise http_error(e)
    return _loan_list(LoanService(db).list_pending())


@router.get("/loans/funded", response_model=LoanListResponse)
async def list_funded_loans(
    db: Session = Depends(get_db),
    lender: UserDB = Depends(require_lender),
):
    """Active and repaid loans funded by the calling lender."""
    return _loan_list(LoanService(db).list_funded(lender.id))


@router.get("/loans/{loan_id}", response_model=LoanEnvelope)
async def get_loan(
    loan_id: str,
    db: Session = Depends(get_db),
    current_user: Optional[UserDB] = Depends(get_optional_user),
):
    """A single loan, if visible to the caller."""
    try:
        loan = LoanService(db).get_loan(loan_id, current_user)
    except LendingError as e:
        raise http_error(e)
    return LoanEnvelope(loan=loan_response(loan))


# =============================================================================
# TRANSITIONS
# =============================================================================

@router.put("/loans/{loan_id}/approve", response_model=LoanEnvelope)
async def approve_loan(
    loan_id: str,
    request: Optional[ApproveRequest] = None,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Approve a pending loan (lenders only)."""
    approved_amount = request.approved_amount if request else None
    try:
        loan = LoanService(db).approve(loan_id, current_user.id, approved_amount=approved_amount)
    except LendingError as e:
        raise http_error(e)
    return LoanEnvelope(loan=loan_response(loan))


@router.put("/loans/{loan_id}/deny", response_model=LoanEnvelope)
async def deny_loan(
    loan_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Deny a pending loan (lenders only)."""
    try:
        loan = LoanService(db).deny(loan_id, current_user.id)
    except LendingError as e:
        raise http_error(e)
    return LoanEnvelope(loan=loan_response(loan))


@router.put("/loans/{loan_id}/fund", response_model=LoanEnvelope)
async def fund_loan(
    loan_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Fund an approved loan (approving lender only)."""
    try:
        loan = LoanService(db).fund(loan_id, current_user.id)
    except LendingError as e:
        raise http_error(e)
    return LoanEnvelope(loan=loan_response(loan))


@router.put("/loans/{loan_id}/repay", response_model=LoanEnvelope)
async def repay_loan(
    loan_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Mark an active loan repaid (owning borrower only)."""
    try:
        loan = LoanService(db).repay(loan_id, current_user.id)
    except LendingError as e:
        raise http_error(e)
    return LoanEnvelope(loan=loan_response(loan))


# =============================================================================
# LENDER PORTFOLIO
# =============================================================================

@router.get("/lender/stats", response_model=LenderStatsResponse)
async def get_lender_stats(
    db: Session = Depends(get_db),
    lender: UserDB = Depends(require_lender),
):
    """
    Portfolio statistics recomputed from the lender's loans on every call.
    """
    try:
        stats = LoanService(db).get_lender_stats(lender.id)
    except LendingError as e:
        raise http_error(e)
    return LenderStatsResponse(**stats.to_dict())

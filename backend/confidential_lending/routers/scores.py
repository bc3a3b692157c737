"""
Confidential Lending - Encrypted Data & Credit Score Router

Submission of encrypted financial indicators and access to the resulting
encrypted credit score. Handles are returned verbatim; only the owner's
explicit decrypt call reveals a plaintext score.
"""
from datetime import datetime
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import UserDB, EncryptedSubmissionDB, CreditScoreDB
from ..auth import get_current_user
from ..services.errors import LendingError
from ..services.scoring import SubmissionService
from ..services.scoring.risk_classifier import tier_for_score
from .errors import http_error

logger = logging.getLogger(__name__)

router = APIRouter(tags=["scoring"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class SubmitDataRequest(BaseModel):
    salary_handle: str = Field(..., description="Encrypted salary handle")
    debts_handle: str = Field(..., description="Encrypted debts handle")
    expenses_handle: str = Field(..., description="Encrypted expenses handle")


class SubmissionResponse(BaseModel):
    id: str
    user_id: str
    salary_handle: str
    debts_handle: str
    expenses_handle: str
    submitted_at: datetime


class CreditScoreResponse(BaseModel):
    id: str
    user_id: str
    score_handle: str
    status: str
    computed_at: datetime


class SubmitDataResponse(BaseModel):
    submission: SubmissionResponse
    credit_score: CreditScoreResponse


class SubmissionListResponse(BaseModel):
    data: List[SubmissionResponse]


class CurrentScoreResponse(BaseModel):
    credit_score: Optional[CreditScoreResponse] = None


class DecryptedScoreResponse(BaseModel):
    credit_score: CreditScoreResponse
    decrypted_score: int
    risk_tier: str


def submission_response(submission: EncryptedSubmissionDB) -> SubmissionResponse:
    return SubmissionResponse(
        id=submission.id,
        user_id=submission.user_id,
        salary_handle=submission.salary_handle,
        debts_handle=submission.debts_handle,
        expenses_handle=submission.expenses_handle,
        submitted_at=submission.submitted_at,
    )


def credit_score_response(score: CreditScoreDB) -> CreditScoreResponse:
    return CreditScoreResponse(
        id=score.id,
        user_id=score.user_id,
        score_handle=score.score_handle,
        status=score.status.value,
        computed_at=score.computed_at,
    )


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.post("/encrypted-data", response_model=SubmitDataResponse)
async def submit_encrypted_data(
    request: SubmitDataRequest,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """
    Submit encrypted financial data and compute a new encrypted credit score.
    """
    try:
        submission, credit_score = SubmissionService(db).submit(
            current_user.id,
            request.salary_handle,
            request.debts_handle,
            request.expenses_handle,
        )
    except LendingError as e:
        raise http_error(e)

    return SubmitDataResponse(
        submission=submission_response(submission),
        credit_score=credit_score_response(credit_score),
    )


@router.get("/encrypted-data", response_model=SubmissionListResponse)
async def list_encrypted_data(
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """List the caller's own submissions, most recent first."""
    submissions = SubmissionService(db).list_submissions(current_user.id)
    return SubmissionListResponse(data=[submission_response(s) for s in submissions])


@router.get("/credit-score", response_model=CurrentScoreResponse)
async def get_credit_score(
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """The caller's current encrypted credit score, if any."""
    score = SubmissionService(db).current_score(current_user.id)
    return CurrentScoreResponse(credit_score=credit_score_response(score) if score else None)


@router.post("/credit-score/decrypt", response_model=DecryptedScoreResponse)
async def decrypt_credit_score(
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """
    Decrypt the caller's own current score.
    """
    try:
        score, value = SubmissionService(db).reveal_score(current_user.id)
    except LendingError as e:
        raise http_error(e)

    return DecryptedScoreResponse(
        credit_score=credit_score_response(score),
        decrypted_score=value,
        risk_tier=tier_for_score(value).value,
    )

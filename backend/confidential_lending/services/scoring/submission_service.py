"""
Submission Service

Accepts encrypted financial indicators from their owner and synchronously
turns them into a new encrypted credit score.

One submit() is one transaction:
    EncryptedSubmission + DATA_SUBMITTED
    ScoreEngine        -> SCORE_COMPUTED + coprocessor counter
    CreditScore (computed)

Scores are superseded by newer ones, never deleted. The current score is
the latest by (computed_at, seq).
"""
import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from ...models.db_models import (
    EncryptedSubmissionDB, CreditScoreDB, ScoreStatus, AuditAction, new_id,
)
from ..errors import NoScoreError, ValidationError
from ..telemetry.audit_trail import AuditTrailService
from ..users import UserService
from . import handle_codec
from .score_engine import ScoreEngine

logger = logging.getLogger(__name__)


class SubmissionService:
    """Encrypted data intake and credit score bookkeeping."""

    def __init__(self, db: Session):
        self.db = db
        self.users = UserService(db)
        self.audit = AuditTrailService(db)
        self.engine = ScoreEngine(db)

    # =========================================================================
    # INTAKE
    # =========================================================================

    def submit(
        self,
        user_id: str,
        salary_handle: str,
        debts_handle: str,
        expenses_handle: str,
    ) -> Tuple[EncryptedSubmissionDB, CreditScoreDB]:
        """
        Store a submission and compute its credit score.

        Raises:
            NotFoundError: unknown user
            ValidationError: a handle is missing or malformed
        """
        user = self.users.require_user(user_id)

        handles = {
            "salary_handle": salary_handle,
            "debts_handle": debts_handle,
            "expenses_handle": expenses_handle,
        }
        malformed = [name for name, handle in handles.items() if not handle_codec.is_handle(handle)]
        if malformed:
            raise ValidationError(f"Malformed encrypted handle(s): {', '.join(malformed)}")

        try:
            submission = EncryptedSubmissionDB(user_id=user.id, **handles)
            self.db.add(submission)
            self.db.flush()
            self.audit.record(
                AuditAction.DATA_SUBMITTED,
                user_id=user.id,
                entity_type="encrypted_data",
                entity_id=submission.id,
            )

            score_id = new_id()
            score_handle = self.engine.compute_score(
                submission.salary_handle,
                submission.debts_handle,
                submission.expenses_handle,
                user_id=user.id,
                credit_score_id=score_id,
            )
            credit_score = CreditScoreDB(
                id=score_id,
                user_id=user.id,
                submission_id=submission.id,
                score_handle=score_handle,
                status=ScoreStatus.COMPUTED,
            )
            self.db.add(credit_score)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Submission for user {user.id} failed: {e}")
            raise

        logger.info(f"Stored submission {submission.id} and credit score {credit_score.id}")
        return submission, credit_score

    # =========================================================================
    # READS
    # =========================================================================

    def list_submissions(self, user_id: str) -> List[EncryptedSubmissionDB]:
        return (
            self.db.query(EncryptedSubmissionDB)
            .filter(EncryptedSubmissionDB.user_id == user_id)
            .order_by(EncryptedSubmissionDB.submitted_at.desc(), EncryptedSubmissionDB.seq.desc())
            .all()
        )

    def current_score(self, user_id: str) -> Optional[CreditScoreDB]:
        """Latest credit score for the user, or None."""
        return (
            self.db.query(CreditScoreDB)
            .filter(CreditScoreDB.user_id == user_id)
            .order_by(CreditScoreDB.computed_at.desc(), CreditScoreDB.seq.desc())
            .first()
        )

    def score_history(self, user_id: str) -> List[CreditScoreDB]:
        return (
            self.db.query(CreditScoreDB)
            .filter(CreditScoreDB.user_id == user_id)
            .order_by(CreditScoreDB.computed_at.desc(), CreditScoreDB.seq.desc())
            .all()
        )

    # =========================================================================
    # OWNER DECRYPTION
    # =========================================================================

    def reveal_score(self, user_id: str) -> Tuple[CreditScoreDB, int]:
        """
        Decrypt the caller's own current score.

        Marks the score as decrypted and records SCORE_DECRYPTED.
        """
        user = self.users.require_user(user_id)
        credit_score = self.current_score(user.id)
        if credit_score is None:
            raise NoScoreError("No credit score found. Submit financial data first.")

        score = handle_codec.decode(credit_score.score_handle)
        credit_score.status = ScoreStatus.DECRYPTED
        self.audit.record(
            AuditAction.SCORE_DECRYPTED,
            user_id=user.id,
            entity_type="credit_score",
            entity_id=credit_score.id,
        )
        self.db.commit()
        return credit_score, score

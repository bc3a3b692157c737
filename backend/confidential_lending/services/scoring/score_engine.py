"""
Score Engine

Simulates the coprocessor computing an encrypted credit score from three
encrypted inputs. The call is synchronous and deterministic; the contract
that matters is inputs -> score handle plus the telemetry and audit it
leaves behind.

Scoring (all inputs decoded first):
    debt_to_income = debts / salary      (1 when salary is 0)
    expense_ratio  = expenses / salary   (1 when salary is 0)

    base 600
    debt_to_income  < 0.2 : +150
                    < 0.4 : +100
                    < 0.6 : +50
                    else  : -50
    expense_ratio   < 0.3 : +100
                    < 0.5 : +50
                    > 0.7 : -50
                    else  : 0

    clamp to [300, 850]
"""
import logging
import time
from typing import Optional

from sqlalchemy.orm import Session

from ...models.db_models import AuditAction
from ..telemetry.audit_trail import AuditTrailService
from ..telemetry.coprocessor_status import CoprocessorStatusTracker
from . import handle_codec

logger = logging.getLogger(__name__)

BASE_SCORE = 600
MIN_SCORE = 300
MAX_SCORE = 850

# (upper bound exclusive, adjustment), checked in order
DEBT_TO_INCOME_BANDS = [
    (0.2, 150),
    (0.4, 100),
    (0.6, 50),
]
DEBT_TO_INCOME_FLOOR_ADJUSTMENT = -50

EXPENSE_RATIO_BANDS = [
    (0.3, 100),
    (0.5, 50),
]
EXPENSE_RATIO_CEILING = 0.7
EXPENSE_RATIO_CEILING_ADJUSTMENT = -50


def _debt_adjustment(debt_to_income: float) -> int:
    for bound, adjustment in DEBT_TO_INCOME_BANDS:
        if debt_to_income < bound:
            return adjustment
    return DEBT_TO_INCOME_FLOOR_ADJUSTMENT


def _expense_adjustment(expense_ratio: float) -> int:
    for bound, adjustment in EXPENSE_RATIO_BANDS:
        if expense_ratio < bound:
            return adjustment
    if expense_ratio > EXPENSE_RATIO_CEILING:
        return EXPENSE_RATIO_CEILING_ADJUSTMENT
    return 0


def score_from_values(salary: int, debts: int, expenses: int) -> int:
    """Deterministic plaintext score in [300, 850]."""
    debt_to_income = debts / salary if salary > 0 else 1
    expense_ratio = expenses / salary if salary > 0 else 1

    score = BASE_SCORE + _debt_adjustment(debt_to_income) + _expense_adjustment(expense_ratio)
    return max(MIN_SCORE, min(MAX_SCORE, score))


class ScoreEngine:
    """
    Encrypted score computation.

    Writes one SCORE_COMPUTED audit entry and bumps the coprocessor counter
    inside the caller's session, so both commit or roll back together with
    the score itself.
    """

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditTrailService(db)
        self.coprocessor = CoprocessorStatusTracker(db)

    def compute_score(
        self,
        salary_handle: str,
        debts_handle: str,
        expenses_handle: str,
        user_id: Optional[str] = None,
        credit_score_id: Optional[str] = None,
    ) -> str:
        """
        Compute an encrypted credit score.

        Args:
            salary_handle: Encrypted salary
            debts_handle: Encrypted debts
            expenses_handle: Encrypted expenses
            user_id: Owner of the score, for the audit entry
            credit_score_id: ID the resulting score will be stored under

        Returns:
            Fresh handle of the computed score
        """
        started = time.perf_counter()

        score = score_from_values(
            handle_codec.decode(salary_handle),
            handle_codec.decode(debts_handle),
            handle_codec.decode(expenses_handle),
        )
        score_handle = handle_codec.encode(score)

        latency_ms = int((time.perf_counter() - started) * 1000)

        self.audit.record(
            AuditAction.SCORE_COMPUTED,
            user_id=user_id,
            entity_type="credit_score",
            entity_id=credit_score_id,
            metadata={"latency_ms": latency_ms},
        )
        self.coprocessor.record_computation(latency_ms)

        logger.info(f"Computed encrypted score for user {user_id} in {latency_ms}ms")
        return score_handle

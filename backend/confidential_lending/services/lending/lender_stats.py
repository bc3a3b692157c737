"""
Lender portfolio statistics.

A projection recomputed from the lender's loans on every call and never
stored, so it cannot drift from the loans themselves.
"""
from dataclasses import dataclass, asdict
from typing import Dict, Iterable

from sqlalchemy.orm import Session

from ...models.db_models import LoanDB, LoanStatus, RiskTier

FUNDED_STATUSES = (LoanStatus.ACTIVE, LoanStatus.REPAID)

# Nominal annual yield assumed per tier (percent), used only as a proxy
TIER_YIELD_PCT = {
    RiskTier.LOW: 5.0,
    RiskTier.MEDIUM: 8.5,
    RiskTier.HIGH: 12.0,
}


@dataclass(frozen=True)
class LenderStats:
    total_funded: int  # minor units
    active_loans: int
    repaid_loans: int
    decided_loans: int
    average_yield_pct: float
    default_rate_pct: float  # share of funded principal in the high-risk tier

    def to_dict(self) -> Dict:
        return asdict(self)


def _principal(loan: LoanDB) -> int:
    return loan.approved_amount if loan.approved_amount is not None else loan.requested_amount


def compute_lender_stats(loans: Iterable[LoanDB]) -> LenderStats:
    """Fold a lender's loans into portfolio statistics."""
    loans = list(loans)
    funded = [loan for loan in loans if loan.status in FUNDED_STATUSES]

    total_funded = sum(_principal(loan) for loan in funded)
    high_risk = sum(_principal(loan) for loan in funded if loan.risk_tier == RiskTier.HIGH)
    weighted_yield = sum(_principal(loan) * TIER_YIELD_PCT[RiskTier(loan.risk_tier)] for loan in funded)

    return LenderStats(
        total_funded=total_funded,
        active_loans=sum(1 for loan in loans if loan.status == LoanStatus.ACTIVE),
        repaid_loans=sum(1 for loan in loans if loan.status == LoanStatus.REPAID),
        decided_loans=len(loans),
        average_yield_pct=round(weighted_yield / total_funded, 2) if total_funded else 0.0,
        default_rate_pct=round(high_risk * 100 / total_funded, 2) if total_funded else 0.0,
    )


def get_lender_stats(db: Session, lender_id: str) -> LenderStats:
    loans = db.query(LoanDB).filter(LoanDB.lender_id == lender_id).all()
    return compute_lender_stats(loans)

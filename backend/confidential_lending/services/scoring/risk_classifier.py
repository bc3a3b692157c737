"""
Risk Classifier

Maps a score handle to a coarse tier. Total: an unreadable handle decodes
to 0 and lands in the most conservative tier.
"""
from ...models.db_models import RiskTier
from . import handle_codec

LOW_RISK_MIN_SCORE = 700
MEDIUM_RISK_MIN_SCORE = 600


def tier_for_score(score: int) -> RiskTier:
    if score >= LOW_RISK_MIN_SCORE:
        return RiskTier.LOW
    if score >= MEDIUM_RISK_MIN_SCORE:
        return RiskTier.MEDIUM
    return RiskTier.HIGH


def classify(score_handle: str) -> RiskTier:
    """Tier of an encrypted score; never raises."""
    return tier_for_score(handle_codec.decode(score_handle))

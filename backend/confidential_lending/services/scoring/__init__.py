"""
Encrypted Scoring Services

HandleCodec -> ScoreEngine -> RiskClassifier, plus the submission intake
that ties them to persisted credit scores.
"""
from . import handle_codec
from .score_engine import ScoreEngine, score_from_values
from .risk_classifier import classify, tier_for_score
from .submission_service import SubmissionService

__all__ = [
    "handle_codec",
    "ScoreEngine",
    "score_from_values",
    "classify",
    "tier_for_score",
    "SubmissionService",
]

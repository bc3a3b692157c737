"""Confidential Lending - Data Models"""
from .db_models import (
    # Enums
    UserRole, ScoreStatus, RiskTier, LoanStatus, CoprocessorState, AuditAction,
    # Tables
    UserDB, EncryptedSubmissionDB, CreditScoreDB, LoanDB, AuditEntryDB, CoprocessorStatusDB,
)

__all__ = [
    "UserRole", "ScoreStatus", "RiskTier", "LoanStatus", "CoprocessorState", "AuditAction",
    "UserDB", "EncryptedSubmissionDB", "CreditScoreDB", "LoanDB", "AuditEntryDB", "CoprocessorStatusDB",
]

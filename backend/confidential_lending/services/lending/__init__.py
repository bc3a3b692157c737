"""
Loan Lifecycle Services

State machine, orchestration service and lender portfolio projection.
"""
from .state_machine import LoanStateMachine, STATE_CONFIG
from .loan_service import LoanService
from .lender_stats import LenderStats, compute_lender_stats, get_lender_stats

__all__ = [
    "LoanStateMachine",
    "STATE_CONFIG",
    "LoanService",
    "LenderStats",
    "compute_lender_stats",
    "get_lender_stats",
]

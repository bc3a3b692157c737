"""
Telemetry Services

Append-only audit trail and singleton coprocessor status.
"""
from .audit_trail import AuditTrailService
from .coprocessor_status import CoprocessorStatusTracker, UNINITIALIZED, UninitializedStatus

__all__ = [
    "AuditTrailService",
    "CoprocessorStatusTracker",
    "UNINITIALIZED",
    "UninitializedStatus",
]

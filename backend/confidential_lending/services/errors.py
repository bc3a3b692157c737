"""
Service-layer error taxonomy.

Workflow operations fail fast with one of these. The handle codec and the
risk classifier never raise; they degrade malformed input to 0 / "high".
"""


class LendingError(Exception):
    """Base class for rejected operations."""
    pass


class NotFoundError(LendingError):
    """Unknown user, loan or score."""
    pass


class PermissionDeniedError(LendingError):
    """Caller's role does not allow the operation."""
    pass


class InvalidStateError(LendingError):
    """Illegal transition, or a transition lost to a concurrent writer."""
    pass


class ValidationError(LendingError):
    """Malformed input shape or out-of-range value."""
    pass


class NoScoreError(LendingError):
    """Loan application attempted before any credit score exists."""
    pass

"""
Audit Trail Service

Append-only record of every successful mutation.

Core Principles:
1. Records are appended, never updated, never deleted.
2. record() flushes into the caller's unit of work; the caller commits.
   An entry therefore exists if and only if the mutation it describes
   was committed.
3. Rejected operations never reach record().
"""
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models.db_models import AuditEntryDB, AuditAction
from ..errors import ValidationError

DEFAULT_QUERY_LIMIT = 100
MAX_QUERY_LIMIT = 1000


class AuditTrailService:
    """Append and query audit entries."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        action: Union[AuditAction, str],
        user_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditEntryDB:
        """
        Append one audit entry.

        Args:
            action: Action name (required)
            user_id: Acting user, None for system-initiated actions
            entity_type: Kind of entity touched (loan, credit_score, ...)
            entity_id: ID of the entity touched
            metadata: Additional context

        Returns:
            The created entry (flushed, not committed)
        """
        name = action.value if isinstance(action, AuditAction) else action
        if not name or not isinstance(name, str):
            raise ValidationError("Audit action is required")

        entry = AuditEntryDB(
            action=name,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            event_metadata=metadata,
        )
        self.db.add(entry)
        self.db.flush()  # Get ID without committing
        return entry

    def query(
        self,
        limit: int = DEFAULT_QUERY_LIMIT,
        user_id: Optional[str] = None,
        action: Optional[Union[AuditAction, str]] = None,
    ) -> List[AuditEntryDB]:
        """Most-recent-first entries. An empty log yields an empty list."""
        limit = max(1, min(int(limit), MAX_QUERY_LIMIT))

        q = self.db.query(AuditEntryDB)
        if user_id is not None:
            q = q.filter(AuditEntryDB.user_id == user_id)
        if action is not None:
            name = action.value if isinstance(action, AuditAction) else action
            q = q.filter(AuditEntryDB.action == name)

        return (
            q.order_by(AuditEntryDB.timestamp.desc(), AuditEntryDB.seq.desc())
            .limit(limit)
            .all()
        )

    def count(self) -> int:
        return self.db.query(func.count(AuditEntryDB.seq)).scalar() or 0

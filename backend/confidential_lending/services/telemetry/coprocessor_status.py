"""
Coprocessor Status Tracker

Single-row operational telemetry for the (simulated) confidential
computation coprocessor.

- The row is created lazily on first write with defaults
  {status: active, total_computations: 0}, as an insert-if-absent so
  sessions racing on a fresh store all land on the same row.
- Every write is a store-level UPDATE. Counters are incremented in SQL,
  never read-modify-written in Python, so concurrent scoring calls do not
  lose updates.
- Key rotation is observational metadata only; it does not invalidate
  existing score handles.
"""
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Optional, Union

from sqlalchemy import func, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from ...models.db_models import CoprocessorStatusDB, CoprocessorState, utcnow
from ..errors import ValidationError

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {"status", "average_latency_ms", "last_key_rotation"}

# Dialects with INSERT ... ON CONFLICT DO NOTHING
INSERT_BY_DIALECT = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


@dataclass(frozen=True)
class UninitializedStatus:
    """Returned by read() before the first write ever happened."""
    initialized: bool = False
    status: Optional[str] = None
    total_computations: int = 0


UNINITIALIZED = UninitializedStatus()


class CoprocessorStatusTracker:
    """Reads and merge-patches the singleton status row."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # READ
    # =========================================================================

    def read(self) -> Union[CoprocessorStatusDB, UninitializedStatus]:
        row = self.db.get(CoprocessorStatusDB, CoprocessorStatusDB.SINGLETON_ID)
        return row if row is not None else UNINITIALIZED

    # =========================================================================
    # WRITES
    # =========================================================================

    def _ensure_row(self) -> None:
        """Insert the row with defaults unless some session already did."""
        dialect = self.db.get_bind().dialect.name
        insert = INSERT_BY_DIALECT.get(dialect)
        if insert is None:
            raise RuntimeError(f"Unsupported database dialect for coprocessor status: {dialect}")

        stmt = (
            insert(CoprocessorStatusDB)
            .values(
                id=CoprocessorStatusDB.SINGLETON_ID,
                status=CoprocessorState.ACTIVE,
                total_computations=0,
                updated_at=utcnow(),
            )
            .on_conflict_do_nothing(index_elements=[CoprocessorStatusDB.id])
        )
        if self.db.execute(stmt).rowcount == 1:
            logger.info("Coprocessor status row initialized")

    def _apply(self, **values) -> CoprocessorStatusDB:
        self._ensure_row()
        values["updated_at"] = utcnow()
        stmt = (
            update(CoprocessorStatusDB)
            .where(CoprocessorStatusDB.id == CoprocessorStatusDB.SINGLETON_ID)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.execute(stmt)
        return self.db.get(
            CoprocessorStatusDB, CoprocessorStatusDB.SINGLETON_ID, populate_existing=True
        )

    def update(self, **fields) -> CoprocessorStatusDB:
        """
        Merge-patch the status row. Only supplied fields change.

        Accepted fields: status, average_latency_ms, last_key_rotation.
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown coprocessor status fields: {', '.join(sorted(unknown))}")

        values = {}
        if "status" in fields:
            try:
                values["status"] = CoprocessorState(fields["status"])
            except ValueError:
                raise ValidationError(f"Invalid coprocessor status: {fields['status']}")
        if "average_latency_ms" in fields:
            latency = fields["average_latency_ms"]
            if latency is not None and (isinstance(latency, bool) or not isinstance(latency, int) or latency < 0):
                raise ValidationError("average_latency_ms must be a non-negative integer")
            values["average_latency_ms"] = latency
        if "last_key_rotation" in fields:
            rotated = fields["last_key_rotation"]
            if rotated is not None and not isinstance(rotated, datetime):
                raise ValidationError("last_key_rotation must be a datetime")
            values["last_key_rotation"] = rotated

        return self._apply(**values)

    def record_computation(self, latency_ms: int) -> CoprocessorStatusDB:
        """Count one computation and fold its latency into the running mean."""
        latency_ms = max(0, int(latency_ms))
        total = CoprocessorStatusDB.total_computations
        mean = func.coalesce(CoprocessorStatusDB.average_latency_ms, latency_ms)

        return self._apply(
            total_computations=total + 1,
            average_latency_ms=(mean * total + latency_ms) // (total + 1),
        )

    def rotate(self) -> CoprocessorStatusDB:
        """Stamp last_key_rotation; nothing else changes."""
        row = self._apply(last_key_rotation=utcnow())
        logger.info(f"Coprocessor key rotation recorded at {row.last_key_rotation.isoformat()}")
        return row

"""
Tests for the Audit Trail and Coprocessor Status Tracker.

Key tests:
1. Audit entries are queried most recent first, limit clamped
2. Entries only exist for committed work
3. Status row is uninitialized until the first write
4. Merge-patch changes only supplied fields
5. Running latency mean and rotation
6. Sessions racing on a fresh store share one row and lose no counts
"""
from datetime import datetime
import threading

import pytest

from confidential_lending.models.db_models import AuditAction, CoprocessorState
from confidential_lending.services.errors import ValidationError
from confidential_lending.services.telemetry import (
    UNINITIALIZED, AuditTrailService, CoprocessorStatusTracker,
)


# =============================================================================
# AUDIT TRAIL
# =============================================================================

class TestAuditTrail:
    """Append-only audit log."""

    def test_empty_log(self, db):
        assert AuditTrailService(db).query() == []
        assert AuditTrailService(db).count() == 0

    def test_record_and_query_newest_first(self, db, borrower):
        audit = AuditTrailService(db)
        first = audit.record(AuditAction.AUDIT_NOTE, user_id=borrower.id, metadata={"n": 1})
        second = audit.record("CUSTOM_ACTION", entity_type="loan", entity_id="abc")
        db.commit()

        entries = audit.query()
        assert [e.id for e in entries] == [second.id, first.id]
        assert entries[1].event_metadata == {"n": 1}
        assert entries[0].user_id is None

    def test_filters(self, db, borrower, lender):
        audit = AuditTrailService(db)
        audit.record(AuditAction.AUDIT_NOTE, user_id=borrower.id)
        audit.record(AuditAction.KEY_ROTATION, user_id=lender.id)
        audit.record(AuditAction.AUDIT_NOTE, user_id=lender.id)
        db.commit()

        assert len(audit.query(user_id=lender.id)) == 2
        assert len(audit.query(action=AuditAction.AUDIT_NOTE)) == 2
        assert len(audit.query(action="AUDIT_NOTE", user_id=lender.id)) == 1

    @pytest.mark.parametrize("limit,expected", [(0, 1), (-10, 1), (2, 2), (5000, 5)])
    def test_limit_clamped(self, db, limit, expected):
        audit = AuditTrailService(db)
        for _ in range(5):
            audit.record(AuditAction.AUDIT_NOTE)
        db.commit()

        assert len(audit.query(limit=limit)) == expected

    def test_action_required(self, db):
        with pytest.raises(ValidationError):
            AuditTrailService(db).record("")

    def test_uncommitted_entries_roll_back(self, db):
        audit = AuditTrailService(db)
        audit.record(AuditAction.AUDIT_NOTE)
        db.rollback()

        assert audit.count() == 0


# =============================================================================
# COPROCESSOR STATUS
# =============================================================================

class TestCoprocessorStatus:
    """Singleton status row."""

    def test_uninitialized_before_first_write(self, db):
        status = CoprocessorStatusTracker(db).read()
        assert status is UNINITIALIZED
        assert status.initialized is False
        assert status.total_computations == 0

    def test_first_write_creates_defaults(self, db):
        row = CoprocessorStatusTracker(db).update(average_latency_ms=12)
        db.commit()

        assert row.status == CoprocessorState.ACTIVE
        assert row.total_computations == 0
        assert row.average_latency_ms == 12
        assert row.last_key_rotation is None

    def test_merge_patch_keeps_other_fields(self, db):
        tracker = CoprocessorStatusTracker(db)
        tracker.update(status="degraded", average_latency_ms=40)
        row = tracker.update(status="active")
        db.commit()

        assert row.status == CoprocessorState.ACTIVE
        assert row.average_latency_ms == 40

    def test_empty_patch_is_noop(self, db):
        tracker = CoprocessorStatusTracker(db)
        tracker.update(average_latency_ms=7)
        row = tracker.update()

        assert row.average_latency_ms == 7

    def test_set_rotation_timestamp(self, db):
        stamp = datetime(2024, 1, 2, 3, 4, 5)
        row = CoprocessorStatusTracker(db).update(last_key_rotation=stamp)
        assert row.last_key_rotation == stamp

    @pytest.mark.parametrize("fields", [
        {"total_computations": 5},
        {"colour": "blue"},
        {"status": "melting"},
        {"average_latency_ms": -1},
        {"average_latency_ms": "fast"},
        {"last_key_rotation": "yesterday"},
    ])
    def test_invalid_patch_rejected(self, db, fields):
        with pytest.raises(ValidationError):
            CoprocessorStatusTracker(db).update(**fields)

    def test_record_computation_running_mean(self, db):
        tracker = CoprocessorStatusTracker(db)
        tracker.record_computation(10)
        tracker.record_computation(20)
        row = tracker.record_computation(30)
        db.commit()

        assert row.total_computations == 3
        assert row.average_latency_ms == 20

    def test_running_mean_floors(self, db):
        tracker = CoprocessorStatusTracker(db)
        tracker.record_computation(1)
        row = tracker.record_computation(2)

        assert row.total_computations == 2
        assert row.average_latency_ms == 1

    def test_rotate_only_touches_timestamp(self, db):
        tracker = CoprocessorStatusTracker(db)
        tracker.update(status="degraded", average_latency_ms=5)
        row = tracker.rotate()
        db.commit()

        assert row.last_key_rotation is not None
        assert row.status == CoprocessorState.DEGRADED
        assert row.average_latency_ms == 5

    def test_rotate_advances(self, db):
        tracker = CoprocessorStatusTracker(db)
        first = tracker.rotate().last_key_rotation
        second = tracker.rotate().last_key_rotation

        assert second >= first


# =============================================================================
# CONCURRENT FIRST WRITES
# =============================================================================

class TestCoprocessorStatusConcurrency:
    """Several sessions creating and bumping the row on a fresh store."""

    def test_stale_session_joins_existing_row(self, file_session_factory):
        first, second = file_session_factory(), file_session_factory()
        try:
            # The second session saw no row before the first one created it
            assert CoprocessorStatusTracker(second).read() is UNINITIALIZED

            CoprocessorStatusTracker(first).record_computation(10)
            first.commit()

            row = CoprocessorStatusTracker(second).record_computation(30)
            second.commit()

            assert row.total_computations == 2
            assert row.average_latency_ms == 20
        finally:
            first.close()
            second.close()

    def test_parallel_first_writes_all_counted(self, threaded_session_factory):
        workers = 4
        barrier = threading.Barrier(workers)
        errors = []

        def score_once():
            session = threaded_session_factory()
            try:
                barrier.wait(timeout=10)
                CoprocessorStatusTracker(session).record_computation(5)
                session.commit()
            except Exception as e:
                errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=score_once) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert errors == []
        check = threaded_session_factory()
        try:
            row = CoprocessorStatusTracker(check).read()
            assert row.total_computations == workers
            assert row.average_latency_ms == 5
        finally:
            check.close()

"""
Confidential Lending - Admin Router
Audit trail access and coprocessor operations.
Audit entries are append-only: admins may read and add notes, never edit.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import UserDB, AuditEntryDB, AuditAction, CoprocessorState
from ..auth import require_admin
from ..services.errors import LendingError
from ..services.telemetry import AuditTrailService, CoprocessorStatusTracker, UninitializedStatus
from .errors import http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class AuditEntryResponse(BaseModel):
    id: str
    user_id: Optional[str] = None
    action: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime


class AuditLogResponse(BaseModel):
    logs: List[AuditEntryResponse]


class AuditNoteRequest(BaseModel):
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(None, description="Free-form note context")


class CoprocessorStatusResponse(BaseModel):
    initialized: bool
    status: Optional[str] = None
    last_key_rotation: Optional[datetime] = None
    total_computations: int = 0
    average_latency_ms: Optional[int] = None
    updated_at: Optional[datetime] = None


class CoprocessorEnvelope(BaseModel):
    status: CoprocessorStatusResponse


class CoprocessorPatchRequest(BaseModel):
    status: Optional[CoprocessorState] = None
    average_latency_ms: Optional[int] = Field(None, ge=0)


class RotateKeysResponse(BaseModel):
    status: CoprocessorStatusResponse
    message: str


def audit_entry_response(entry: AuditEntryDB) -> AuditEntryResponse:
    return AuditEntryResponse(
        id=entry.id,
        user_id=entry.user_id,
        action=entry.action,
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        metadata=entry.event_metadata,
        timestamp=entry.timestamp,
    )


def coprocessor_response(row) -> CoprocessorStatusResponse:
    if isinstance(row, UninitializedStatus):
        return CoprocessorStatusResponse(initialized=False)
    return CoprocessorStatusResponse(
        initialized=True,
        status=row.status.value,
        last_key_rotation=row.last_key_rotation,
        total_computations=row.total_computations,
        average_latency_ms=row.average_latency_ms,
        updated_at=row.updated_at,
    )


# =============================================================================
# AUDIT TRAIL
# =============================================================================

@router.get("/audit-logs", response_model=AuditLogResponse)
async def get_audit_logs(
    limit: int = Query(100, ge=1, le=1000),
    action: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    """
    Most recent audit entries first.
    """
    entries = AuditTrailService(db).query(limit=limit, user_id=user_id, action=action)
    return AuditLogResponse(logs=[audit_entry_response(e) for e in entries])


@router.post("/audit-logs", response_model=AuditEntryResponse)
async def append_audit_note(
    request: AuditNoteRequest,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    """Append a manual note to the audit trail."""
    entry = AuditTrailService(db).record(
        AuditAction.AUDIT_NOTE,
        user_id=admin.id,
        entity_type=request.entity_type,
        entity_id=request.entity_id,
        metadata=request.metadata,
    )
    db.commit()
    return audit_entry_response(entry)


# =============================================================================
# COPROCESSOR
# =============================================================================

@router.get("/coprocessor-status", response_model=CoprocessorEnvelope)
async def get_coprocessor_status(
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    """Current coprocessor telemetry, or initialized=false before first use."""
    return CoprocessorEnvelope(status=coprocessor_response(CoprocessorStatusTracker(db).read()))


@router.patch("/coprocessor-status", response_model=CoprocessorEnvelope)
async def patch_coprocessor_status(
    request: CoprocessorPatchRequest,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    """
    Merge-patch the coprocessor status. Only supplied fields change.
    """
    fields = request.model_dump(exclude_unset=True)
    try:
        row = CoprocessorStatusTracker(db).update(**fields)
    except LendingError as e:
        db.rollback()
        raise http_error(e)

    AuditTrailService(db).record(
        AuditAction.COPROCESSOR_STATUS_UPDATED,
        user_id=admin.id,
        entity_type="coprocessor",
        entity_id=row.id,
        metadata={k: (v.value if isinstance(v, CoprocessorState) else v) for k, v in fields.items()},
    )
    db.commit()

    logger.info(f"Coprocessor status patched by {admin.id}: {sorted(fields)}")
    return CoprocessorEnvelope(status=coprocessor_response(row))


@router.post("/rotate-keys", response_model=RotateKeysResponse)
async def rotate_keys(
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    """
    Record a key rotation. Existing score handles stay valid.
    """
    row = CoprocessorStatusTracker(db).rotate()
    AuditTrailService(db).record(
        AuditAction.KEY_ROTATION,
        user_id=admin.id,
        entity_type="coprocessor",
        entity_id=row.id,
    )
    db.commit()

    return RotateKeysResponse(status=coprocessor_response(row), message="Keys rotated successfully")

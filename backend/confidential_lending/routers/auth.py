"""
Confidential Lending - Authentication Router
Handles wallet connection (registration / role change) and identity lookup.
"""
from datetime import datetime
from typing import Optional
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import UserDB, UserRole
from ..auth import create_access_token, get_current_user
from ..services.errors import LendingError
from ..services.users import UserService
from .errors import http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class ConnectRequest(BaseModel):
    wallet_address: str = Field(..., description="0x-prefixed 20-byte wallet address")
    role: UserRole = UserRole.BORROWER
    reviewer_code: Optional[str] = Field(
        None, description="Demo/reviewer access code required for lender and admin roles"
    )


class UserResponse(BaseModel):
    id: str
    wallet_address: str
    role: str
    created_at: datetime


class ConnectResponse(BaseModel):
    user: UserResponse
    created: bool
    access_token: str
    token_type: str = "bearer"


def user_response(user: UserDB) -> UserResponse:
    return UserResponse(
        id=user.id,
        wallet_address=user.wallet_address,
        role=user.role.value,
        created_at=user.created_at,
    )


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.post("/connect", response_model=ConnectResponse)
async def connect(request: ConnectRequest, db: Session = Depends(get_db)):
    """
    Connect a wallet: registers it on first use, or changes its role.

    Lender and admin roles require the reviewer access code. That code is a
    shared demo secret, not production authentication.
    """
    try:
        user, created = UserService(db).connect(
            request.wallet_address,
            role=request.role,
            reviewer_code=request.reviewer_code,
        )
    except LendingError as e:
        raise http_error(e)

    access_token = create_access_token(user.id, user.wallet_address, user.role.value)

    logger.info(f"Wallet connected: {user.wallet_address} ({user.role.value})")
    return ConnectResponse(user=user_response(user), created=created, access_token=access_token)


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: UserDB = Depends(get_current_user)):
    """
    Get current user info.
    """
    return user_response(current_user)

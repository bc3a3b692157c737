"""
User Registry

Wallet-keyed users with a closed set of roles. A role changes only through
connect().

REVIEWER ACCESS CODE:
Lender and admin roles are granted on presentation of a static shared
secret (REVIEWER_ACCESS_CODE). This exists so reviewers and demos can reach
the lender/admin surfaces without on-chain proof. It is NOT production
authentication: anyone holding the code can self-assign privileged roles.
Leave REVIEWER_ACCESS_CODE unset to disable privileged self-registration.
"""
import hmac
import logging
import os
import re
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from ..models.db_models import UserDB, UserRole, AuditAction
from .errors import NotFoundError, PermissionDeniedError, ValidationError
from .telemetry.audit_trail import AuditTrailService

logger = logging.getLogger(__name__)

WALLET_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")

PRIVILEGED_ROLES = {UserRole.LENDER, UserRole.ADMIN}


def reviewer_access_code() -> Optional[str]:
    return os.getenv("REVIEWER_ACCESS_CODE") or None


def normalize_wallet(wallet_address: str) -> str:
    if not isinstance(wallet_address, str) or not WALLET_ADDRESS_PATTERN.match(wallet_address.strip()):
        raise ValidationError("Wallet address must be 0x followed by 40 hex characters")
    return wallet_address.strip().lower()


def parse_role(role) -> UserRole:
    try:
        return UserRole(role)
    except ValueError:
        valid = ", ".join(r.value for r in UserRole)
        raise ValidationError(f"Invalid role '{role}'. Must be one of: {valid}")


def require_role(user: Optional[UserDB], *roles: UserRole) -> UserDB:
    """Capability check: the user must exist and hold one of the roles."""
    if user is None:
        raise PermissionDeniedError("Unknown caller")
    if user.role not in roles:
        allowed = " or ".join(r.value for r in roles)
        raise PermissionDeniedError(f"Only {allowed} users may perform this action")
    return user


class UserService:
    """Lookup and registration of wallet users."""

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditTrailService(db)

    def get_user(self, user_id: Optional[str]) -> Optional[UserDB]:
        if not user_id:
            return None
        return self.db.query(UserDB).filter(UserDB.id == user_id).first()

    def require_user(self, user_id: Optional[str]) -> UserDB:
        user = self.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def get_by_wallet(self, wallet_address: str) -> Optional[UserDB]:
        try:
            wallet = normalize_wallet(wallet_address)
        except ValidationError:
            return None
        return self.db.query(UserDB).filter(UserDB.wallet_address == wallet).first()

    def _check_reviewer_code(self, role: UserRole, reviewer_code: Optional[str]) -> None:
        if role not in PRIVILEGED_ROLES:
            return
        expected = reviewer_access_code()
        if expected is None or not reviewer_code or not hmac.compare_digest(
            reviewer_code.encode("utf-8"), expected.encode("utf-8")
        ):
            raise PermissionDeniedError(f"A valid reviewer access code is required for the {role.value} role")
        logger.warning(
            f"Reviewer access code used to grant '{role.value}' role; "
            "this bypass is not suitable for production authentication"
        )

    def connect(
        self,
        wallet_address: str,
        role=UserRole.BORROWER,
        reviewer_code: Optional[str] = None,
    ) -> Tuple[UserDB, bool]:
        """
        Register a wallet or change its role.

        Returns:
            (user, created)
        """
        wallet = normalize_wallet(wallet_address)
        role = parse_role(role)
        self._check_reviewer_code(role, reviewer_code)

        user = self.db.query(UserDB).filter(UserDB.wallet_address == wallet).first()

        if user is None:
            user = UserDB(wallet_address=wallet, role=role)
            self.db.add(user)
            self.db.flush()
            self.audit.record(AuditAction.USER_CREATED, user_id=user.id, entity_type="user", entity_id=user.id,
                              metadata={"role": role.value})
            self.db.commit()
            logger.info(f"Registered wallet {wallet} as {role.value}")
            return user, True

        if user.role != role:
            old_role = user.role
            user.role = role
            self.audit.record(
                AuditAction.ROLE_CHANGED,
                user_id=user.id,
                entity_type="user",
                entity_id=user.id,
                metadata={"old_role": old_role.value, "new_role": role.value},
            )
            self.db.commit()
            logger.info(f"Wallet {wallet} role changed {old_role.value} -> {role.value}")

        return user, False

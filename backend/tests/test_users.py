"""
Tests for the User Registry.

Key tests:
1. connect registers a wallet once, normalized to lowercase
2. Privileged roles need the reviewer access code
3. Role changes are audited; unchanged reconnects are not
"""
import pytest

from confidential_lending.models.db_models import AuditAction, UserDB, UserRole
from confidential_lending.services.errors import PermissionDeniedError, ValidationError
from confidential_lending.services.telemetry import AuditTrailService
from confidential_lending.services.users import UserService, normalize_wallet, require_role

WALLET = "0xAbCdEf0123456789aBcDeF0123456789AbCdEf01"


@pytest.fixture
def reviewer_code(monkeypatch):
    monkeypatch.setenv("REVIEWER_ACCESS_CODE", "open-sesame")
    return "open-sesame"


class TestConnect:
    """Registration and role changes."""

    def test_new_wallet_registers_as_borrower(self, db):
        user, created = UserService(db).connect(WALLET)

        assert created is True
        assert user.role == UserRole.BORROWER
        assert user.wallet_address == WALLET.lower()

        entry = AuditTrailService(db).query()[0]
        assert entry.action == AuditAction.USER_CREATED.value
        assert entry.event_metadata == {"role": "borrower"}

    def test_reconnect_returns_same_user(self, db):
        service = UserService(db)
        first, _ = service.connect(WALLET)
        second, created = service.connect(WALLET.lower())

        assert created is False
        assert second.id == first.id
        assert db.query(UserDB).count() == 1
        assert AuditTrailService(db).count() == 1

    @pytest.mark.parametrize("wallet", ["", "0x123", "abcdef0123456789abcdef0123456789abcdef01", "0x" + "g" * 40, None])
    def test_invalid_wallet(self, db, wallet):
        with pytest.raises(ValidationError):
            UserService(db).connect(wallet)

    def test_invalid_role(self, db):
        with pytest.raises(ValidationError):
            UserService(db).connect(WALLET, role="superuser")

    def test_lender_requires_code(self, db, reviewer_code):
        with pytest.raises(PermissionDeniedError):
            UserService(db).connect(WALLET, role="lender")
        with pytest.raises(PermissionDeniedError):
            UserService(db).connect(WALLET, role="lender", reviewer_code="wrong")
        assert db.query(UserDB).count() == 0

    def test_privileged_roles_disabled_without_configured_code(self, db, monkeypatch):
        monkeypatch.delenv("REVIEWER_ACCESS_CODE", raising=False)
        with pytest.raises(PermissionDeniedError):
            UserService(db).connect(WALLET, role=UserRole.ADMIN, reviewer_code="anything")

    def test_lender_with_code(self, db, reviewer_code):
        user, created = UserService(db).connect(WALLET, role="lender", reviewer_code=reviewer_code)
        assert created is True
        assert user.role == UserRole.LENDER

    def test_role_change_audited(self, db, reviewer_code):
        service = UserService(db)
        service.connect(WALLET)
        user, created = service.connect(WALLET, role=UserRole.ADMIN, reviewer_code=reviewer_code)

        assert created is False
        assert user.role == UserRole.ADMIN
        entry = AuditTrailService(db).query(action=AuditAction.ROLE_CHANGED)[0]
        assert entry.event_metadata == {"old_role": "borrower", "new_role": "admin"}

    def test_downgrade_to_borrower_needs_no_code(self, db, reviewer_code):
        service = UserService(db)
        service.connect(WALLET, role="lender", reviewer_code=reviewer_code)
        user, _ = service.connect(WALLET, role="borrower")

        assert user.role == UserRole.BORROWER


class TestHelpers:
    """Wallet normalization and role checks."""

    def test_normalize_wallet(self):
        assert normalize_wallet(f"  {WALLET} ") == WALLET.lower()

    def test_get_by_wallet(self, db):
        service = UserService(db)
        user, _ = service.connect(WALLET)

        assert service.get_by_wallet(WALLET.upper().replace("0X", "0x")).id == user.id
        assert service.get_by_wallet("not-a-wallet") is None

    def test_require_role(self, borrower, lender):
        assert require_role(lender, UserRole.LENDER) is lender
        with pytest.raises(PermissionDeniedError):
            require_role(borrower, UserRole.LENDER, UserRole.ADMIN)
        with pytest.raises(PermissionDeniedError):
            require_role(None, UserRole.BORROWER)

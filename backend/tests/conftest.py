"""
Shared fixtures: an in-memory SQLite database per test and a few users.
"""
import os

# Must be set before the application's engine is created on import
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from confidential_lending.database import Base, build_engine
from confidential_lending.models import db_models  # noqa: F401  (registers tables)
from confidential_lending.models.db_models import UserDB, UserRole
from confidential_lending.services.scoring import SubmissionService, handle_codec


def make_wallet(n: int) -> str:
    return "0x" + f"{n:040x}"


@pytest.fixture
def engine():
    """Fresh in-memory database with all tables."""
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def file_session_factory(tmp_path):
    """Sessions on a file database, so two sessions see each other's commits."""
    engine = build_engine(f"sqlite:///{tmp_path / 'shared.db'}")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False)
    engine.dispose()


@pytest.fixture
def threaded_session_factory(tmp_path):
    """
    File database for sessions running in parallel threads.

    Each transaction opens with BEGIN IMMEDIATE so concurrent writers queue
    on the database lock instead of failing a SHARED -> RESERVED upgrade.
    """
    engine = build_engine(f"sqlite:///{tmp_path / 'threaded.db'}", connect_args={"timeout": 30})

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(connection):
        connection.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False)
    engine.dispose()


@pytest.fixture
def make_user(db):
    """Factory creating committed users with sequential wallets."""
    counter = {"n": 0}

    def _make(role: UserRole = UserRole.BORROWER) -> UserDB:
        counter["n"] += 1
        user = UserDB(wallet_address=make_wallet(counter["n"]), role=role)
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def borrower(make_user):
    return make_user(UserRole.BORROWER)


@pytest.fixture
def lender(make_user):
    return make_user(UserRole.LENDER)


@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN)


@pytest.fixture
def submit_financials(db):
    """Submit plaintext financials for a user through the real intake path."""

    def _submit(user_id: str, salary: int, debts: int, expenses: int):
        return SubmissionService(db).submit(
            user_id,
            handle_codec.encode(salary),
            handle_codec.encode(debts),
            handle_codec.encode(expenses),
        )

    return _submit

import os
_default_test_secret = "test-jwt-secret-for-pytest-only-0000000000000000"
if len(os.environ.get("JWT_SECRET", "")) < 32:
    os.environ["JWT_SECRET"] = _default_test_secret

os.environ.setdefault("ENV", "test")
os.environ.setdefault("LIVE_SYNC_ENABLED", "0")

import subprocess
import tempfile
from itertools import count
from pathlib import Path

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url

_sqlite_path = Path(tempfile.gettempdir()) / f"shiftdesk_test_{os.getpid()}.db"
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", f"sqlite:///{_sqlite_path}")
os.environ["DATABASE_URL"] = TEST_DATABASE_URL

from shiftdesk import database
from shiftdesk.core.authorization import Actor, Role
from shiftdesk.core.config import get_settings
from shiftdesk.models.profile import Profile
from shiftdesk.services.profile_store import ProfileStore
from shiftdesk.services.shift_ledger import ShiftLedger
from shiftdesk.services.shift_service import ShiftService

_profile_ids = count(1000)


def _ensure_database_exists(database_url: str) -> None:
    url = make_url(database_url)

    if not url.drivername.startswith("postgresql"):
        return

    db_name = url.database
    admin_url = url.set(database="postgres")
    admin_engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")

    try:
        with admin_engine.connect() as conn:
            exists = conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": db_name},
            ).scalar()
            if not exists:
                safe_db_name = db_name.replace('"', '""')
                conn.execute(text(f'CREATE DATABASE "{safe_db_name}"'))
    finally:
        admin_engine.dispose()


@pytest.fixture(scope="session", autouse=True)
def _prepare_test_database():
    if TEST_DATABASE_URL.startswith("sqlite") and _sqlite_path.exists():
        _sqlite_path.unlink()
    _ensure_database_exists(TEST_DATABASE_URL)

    env = os.environ.copy()
    env["DATABASE_URL"] = TEST_DATABASE_URL

    subprocess.run(
        ["alembic", "upgrade", "head"],
        check=True,
        cwd=Path(__file__).resolve().parents[2],
        env=env,
    )

    database.configure_database()
    yield

    database.engine.dispose()
    if TEST_DATABASE_URL.startswith("sqlite") and _sqlite_path.exists():
        _sqlite_path.unlink()


def _clear_tables() -> None:
    with database.engine.begin() as conn:
        for table in reversed(database.Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(scope="function", autouse=True)
def _clear_tables_between_tests():
    _clear_tables()
    yield
    _clear_tables()


@pytest.fixture
def profile_factory():
    def _create(display_name: str = "Employee", role: str = "employee", avatar_url=None) -> Profile:
        db = database.SessionLocal()
        try:
            profile = Profile(
                id=next(_profile_ids),
                display_name=display_name,
                avatar_url=avatar_url,
                role=role,
            )
            db.add(profile)
            db.commit()
            db.refresh(profile)
            return profile
        finally:
            db.close()

    return _create


@pytest.fixture
def ledger():
    return ShiftLedger()


@pytest.fixture
def profiles():
    return ProfileStore()


@pytest.fixture
def service(ledger, profiles):
    return ShiftService(ledger, profiles, settings=get_settings(), sleep=lambda _s: None)


@pytest.fixture
def admin(profile_factory) -> Actor:
    p = profile_factory("Admin", role="admin")
    return Actor(employee_id=p.id, role=Role.ADMIN)


@pytest.fixture
def employee(profile_factory) -> Actor:
    p = profile_factory("Alice")
    return Actor(employee_id=p.id, role=Role.EMPLOYEE)

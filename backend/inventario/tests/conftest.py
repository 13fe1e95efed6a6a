import os
import tempfile
from pathlib import Path
from uuid import uuid4

import pytest

TEST_DB_FILE = Path(tempfile.gettempdir()) / f"test_inventario_{uuid4().hex}.db"
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_FILE.as_posix()}"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ALGORITHM", "HS256")
os.environ.setdefault("ACCESS_TOKEN_EXPIRE_MINUTES", "60")
os.environ.setdefault("DB_BOOTSTRAP_MODE", "off")

from inventario.core.security import get_password_hash  # noqa: E402
from inventario.database.base import Base  # noqa: E402
from inventario.database.session import SessionLocal, engine  # noqa: E402
import inventario.models  # noqa: E402,F401
from inventario.models.user import User  # noqa: E402


@pytest.fixture
def reset_database():
    engine.dispose()
    if TEST_DB_FILE.exists():
        TEST_DB_FILE.unlink()
    Base.metadata.create_all(bind=engine)
    try:
        yield
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        if TEST_DB_FILE.exists():
            TEST_DB_FILE.unlink()


@pytest.fixture
def db_session(reset_database):
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_user(db, role: str = "admin", permissions: str = "[]") -> User:
    suffix = uuid4().hex[:8]
    user = User(
        username=f"{role}.{suffix}",
        name=f"Usuario {role}",
        email=f"{role}.{suffix}@test.local",
        password=get_password_hash("Admin@123"),
        role=role,
        permissions=permissions,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin_user(db_session) -> User:
    return create_user(db_session)


@pytest.fixture
def make_user(db_session):
    def factory(role: str = "usuario", permissions: str = "[]") -> User:
        return create_user(db_session, role=role, permissions=permissions)

    return factory

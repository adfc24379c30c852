import os
import sys
from pathlib import Path
import uuid
import time

import pytest

backend_dir = Path(__file__).resolve().parents[1]
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db import session as session_module

# Import models so that they are registered in Base.metadata before create_all.
from app.models.user import User, UserRole  # noqa: F401
from app.models.game import Game, GameTemplate  # noqa: F401
from app.models.security_audit import SecurityAuditEvent  # noqa: F401

from app.core.security import create_access_token
from app.services.game_templates import ensure_game_template
from app.services.storage import build_object_key, get_asset_store


class _MemoryRedis:
    def __init__(self):
        self._data: dict[str, tuple[str, float | None]] = {}

    def _now(self) -> float:
        return time.time()

    def _get_entry(self, key: str):
        v = self._data.get(key)
        if not v:
            return None
        value, exp = v
        if exp is not None and exp <= self._now():
            self._data.pop(key, None)
            return None
        return value, exp

    def get(self, key: str):
        entry = self._get_entry(key)
        return entry[0] if entry else None

    def incr(self, key: str):
        cur = self.get(key)
        n = int(cur or 0) + 1
        _, exp = self._data.get(key, ("", None))
        self._data[key] = (str(n), exp)
        return n

    def expire(self, key: str, seconds: int):
        entry = self._get_entry(key)
        if not entry:
            return False
        value, _ = entry
        self._data[key] = (value, self._now() + int(seconds))
        return True

    def ttl(self, key: str):
        entry = self._get_entry(key)
        if not entry:
            return -2
        _, exp = entry
        if exp is None:
            return -1
        return max(0, int(exp - self._now()))

    def flushall(self):
        self._data.clear()


class MemoryAssetStore:
    """In-memory stand-in for the S3 asset store."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.uploads: list[str] = []
        self.removed: list[str] = []
        self.fail_on: set[str] = set()

    def upload(self, prefix, file):
        key = build_object_key(prefix=prefix, filename=file.filename)
        self.objects[key] = file.content
        self.uploads.append(key)
        return key

    def remove(self, reference):
        self.removed.append(reference)
        if reference in self.fail_on:
            raise RuntimeError("storage unavailable")
        self.objects.pop(reference, None)

    def ping(self):
        return None


# Configure test DB (SQLite in-memory) at import time so all tests importing
# app.db.session.SessionLocal will get the patched version.
_engine = create_engine(
    "sqlite+pysqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
Base.metadata.create_all(bind=_engine)
session_module.engine = _engine
session_module.SessionLocal = session_module.sessionmaker(autocommit=False, autoflush=False, bind=_engine)


def _seed_templates() -> None:
    with session_module.SessionLocal() as db:
        ensure_game_template(db, slug="quiz", name="Quiz")
        db.commit()


_seed_templates()


# Stub Redis at import time (rate limiting).
_mem_redis = _MemoryRedis()
import app.core.rate_limit as rate_limit_module

rate_limit_module.get_redis = lambda: _mem_redis

from app.main import create_app  # noqa: E402


@pytest.fixture()
def mem_redis():
    _mem_redis.flushall()
    return _mem_redis


@pytest.fixture()
def assets():
    return MemoryAssetStore()


@pytest.fixture()
def client(assets, mem_redis):
    app = create_app()

    # Ensure app dependencies use our session factory.
    def _get_db_override():
        db = session_module.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[session_module.get_db] = _get_db_override
    app.dependency_overrides[get_asset_store] = lambda: assets
    return TestClient(app)


@pytest.fixture()
def db():
    with session_module.SessionLocal() as session:
        yield session


def _create_user(*, role: UserRole) -> uuid.UUID:
    with session_module.SessionLocal() as s:
        user = User(name=f"u_{role.value.lower()}_{uuid.uuid4().hex[:8]}", role=role)
        s.add(user)
        s.commit()
        return user.id


@pytest.fixture()
def make_user():
    def _make(role: UserRole = UserRole.user) -> uuid.UUID:
        return _create_user(role=role)

    return _make


@pytest.fixture()
def headers_for():
    def _headers(user_id: uuid.UUID) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id=user_id)}"}

    return _headers


@pytest.fixture()
def owner_id(make_user):
    return make_user(UserRole.user)


@pytest.fixture()
def auth_headers(owner_id, headers_for):
    return headers_for(owner_id)

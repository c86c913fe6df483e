from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine, select

from worklog_auth.domain.models import Identity, Permission, Role, RolePermission, now_utc
from worklog_auth.domain.permissions import DEFAULT_PERMISSIONS, normalize_grant
from worklog_auth.infra import audit, db, redis_state
from worklog_auth.infra.identity_provider import hash_password

DEFAULT_PASSWORD = "secret-pass"


class FakeRedis:
    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._store[key] = value
        return True

    def get(self, key: str) -> str | None:
        return self._store.get(key)

    def keys(self) -> list[str]:
        return list(self._store)

    def ping(self) -> bool:
        return True


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2026, 10, 18, 9, 0, tzinfo=UTC)

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now


class Seeder:
    """Writes fixture rows straight through SQLModel, bypassing the services."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def permissions(self) -> dict[str, str]:
        with Session(self._engine) as session:
            existing = {item.key for item in session.exec(select(Permission)).all()}
            for key, label in DEFAULT_PERMISSIONS.items():
                if key not in existing:
                    session.add(Permission(key=key, label=label))
            session.commit()
            return {item.key: item.id for item in session.exec(select(Permission)).all()}

    def role(
        self,
        name: str,
        grants: dict[str, tuple[bool, bool]] | None = None,
        *,
        is_active: bool = True,
        role_id: str | None = None,
    ) -> str:
        permission_ids = self.permissions()
        with Session(self._engine) as session:
            role = Role(name=name, is_active=is_active)
            if role_id is not None:
                role.id = role_id
            session.add(role)
            session.flush()
            for key, (can_read, can_write) in (grants or {}).items():
                can_read, can_write = normalize_grant(can_read, can_write)
                session.add(
                    RolePermission(
                        role_id=role.id,
                        permission_id=permission_ids[key],
                        can_read=can_read,
                        can_write=can_write,
                    )
                )
            session.commit()
            return role.id

    def identity(
        self,
        account_id: str,
        *,
        role_id: str | None = None,
        password: str = DEFAULT_PASSWORD,
        approved: bool = True,
        is_active: bool = True,
    ) -> str:
        with Session(self._engine) as session:
            identity = Identity(
                account_id=account_id,
                name=account_id.title(),
                password_hash=hash_password(password),
                is_active=is_active,
                role_id=role_id,
                approved_at=now_utc() if approved else None,
            )
            session.add(identity)
            session.commit()
            return identity.id


@pytest.fixture()
def test_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[Engine, None, None]:
    db_path = tmp_path / "auth_test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(engine)
    monkeypatch.setattr(db, "engine", engine)
    monkeypatch.setattr(audit, "engine", engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def fake_redis(monkeypatch: pytest.MonkeyPatch) -> FakeRedis:
    fake = FakeRedis()
    monkeypatch.setattr(redis_state, "get_redis", lambda: fake)
    return fake


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def seed(test_engine: Engine) -> Seeder:
    return Seeder(test_engine)

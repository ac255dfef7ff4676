"""Shared fixtures for Sharebox tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from sharebox import EventBus, LocalObjectStore, Principal, Sharebox, ShareboxSettings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

    from sharebox import AuditEvent


@pytest.fixture
def settings(tmp_path: Path) -> ShareboxSettings:
    """Settings isolated from the environment and any ``.env`` file."""
    return ShareboxSettings(
        _env_file=None,  # type: ignore[call-arg]
        database_url="sqlite+aiosqlite://",
        local_storage_path=str(tmp_path / "objects"),
        storage_timeout_seconds=5.0,
    )


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine with all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def file_engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """File-backed SQLite engine: each session gets its own connection."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sharebox.db'}", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def async_session(async_engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with factory() as session:
        yield session


@pytest.fixture
def store(settings: ShareboxSettings) -> LocalObjectStore:
    return LocalObjectStore(settings.local_storage_path)


@pytest.fixture
def audit_events() -> list[AuditEvent]:
    return []


@pytest.fixture
def event_bus(audit_events: list[AuditEvent]) -> EventBus:
    """Event bus that records every emitted audit event."""
    bus = EventBus()

    async def _record(event: AuditEvent) -> None:
        audit_events.append(event)

    bus.register(_record)
    return bus


@pytest.fixture
def box(
    async_engine: AsyncEngine,
    store: LocalObjectStore,
    settings: ShareboxSettings,
    event_bus: EventBus,
) -> Sharebox:
    return Sharebox(engine=async_engine, store=store, settings=settings, event_bus=event_bus)


@pytest.fixture
def file_box(
    file_engine: AsyncEngine,
    store: LocalObjectStore,
    settings: ShareboxSettings,
    event_bus: EventBus,
) -> Sharebox:
    """Sharebox on a file database, for tests that need real concurrency."""
    return Sharebox(engine=file_engine, store=store, settings=settings, event_bus=event_bus)


@pytest.fixture
def alice() -> Principal:
    return Principal("alice")


@pytest.fixture
def bob() -> Principal:
    return Principal("bob")


@pytest.fixture
def stored_objects(store: LocalObjectStore):
    """Callable listing every object file currently under the store root."""

    def _list() -> list[Path]:
        return sorted(p for p in store.root.rglob("*") if p.is_file())

    return _list

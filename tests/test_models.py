"""Tests for SQLModel tables and their helper methods."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from sharebox.models import Collaborator, File, Folder, ShareLink


class TestShareLinkHelpers:
    def test_defaults(self):
        link = ShareLink(owner_id="alice", file_id="f1", token="t")
        assert link.is_active is True
        assert link.allow_download is True
        assert link.max_downloads == 0
        assert link.permission == "view"
        assert link.has_password is False
        assert link.is_accessible()

    def test_expired(self):
        link = ShareLink(
            owner_id="alice",
            file_id="f1",
            token="t",
            expires_at=datetime.now(UTC) - timedelta(hours=1),
        )
        assert link.is_expired()
        assert not link.is_accessible()

    def test_naive_expiry_treated_as_utc(self):
        now = datetime(2024, 6, 1, tzinfo=UTC)
        link = ShareLink(owner_id="a", file_id="f", token="t", expires_at=datetime(2024, 5, 1))
        assert link.is_expired(now)

    def test_unlimited_quota(self):
        link = ShareLink(owner_id="a", file_id="f", token="t", download_count=10**6)
        assert not link.is_quota_exhausted()

    def test_quota_exhausted(self):
        link = ShareLink(owner_id="a", file_id="f", token="t", max_downloads=2, download_count=2)
        assert link.is_quota_exhausted()
        assert not link.is_accessible()

    def test_inactive(self):
        link = ShareLink(owner_id="a", file_id="f", token="t", is_active=False)
        assert not link.is_accessible()


class TestCollaboratorHelpers:
    def test_no_expiry(self):
        grant = Collaborator(user_id="bob", file_id="f1")
        assert grant.role == "viewer"
        assert not grant.is_expired()

    def test_expired(self):
        grant = Collaborator(
            user_id="bob", file_id="f1", expires_at=datetime.now(UTC) - timedelta(minutes=1)
        )
        assert grant.is_expired()


class TestPersistence:
    async def test_folder_and_file_roundtrip(self, async_session):
        folder = Folder(owner_id="alice", name="docs", path="/docs")
        async_session.add(folder)
        await async_session.flush()
        file = File(
            owner_id="alice",
            folder_id=folder.id,
            original_name="a.txt",
            storage_key="alice/abc.txt",
            size_bytes=3,
        )
        async_session.add(file)
        await async_session.commit()

        result = await async_session.execute(select(File).where(File.folder_id == folder.id))
        loaded = result.scalar_one()
        assert loaded.original_name == "a.txt"
        assert loaded.is_trashed is False
        assert loaded.trashed_at is None
        assert loaded.download_count == 0

    async def test_share_token_unique(self, async_session):
        async_session.add(ShareLink(owner_id="alice", file_id="f1", token="same"))
        await async_session.flush()
        async_session.add(ShareLink(owner_id="alice", file_id="f2", token="same"))
        with pytest.raises(IntegrityError):
            await async_session.flush()
        await async_session.rollback()

    async def test_storage_key_unique(self, async_session):
        async_session.add(File(owner_id="alice", storage_key="alice/k"))
        await async_session.flush()
        async_session.add(File(owner_id="alice", storage_key="alice/k"))
        with pytest.raises(IntegrityError):
            await async_session.flush()
        await async_session.rollback()

    def test_ids_generated(self):
        a = Folder(owner_id="alice", name="a", path="/a")
        b = Folder(owner_id="alice", name="b", path="/b")
        assert a.id != b.id

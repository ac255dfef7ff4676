"""Tests for the permission resolver — pure decisions and DB-backed targets."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

import pytest

from sharebox.exceptions import ForbiddenError, NotFoundError
from sharebox.models import Collaborator, File, Folder
from sharebox.permissions import (
    AccessTarget,
    PermissionService,
    Principal,
    ResourceKind,
    Role,
    can_access,
    effective_grant,
    resolve_role,
)

NOW = datetime(2024, 6, 1, tzinfo=UTC)
ALICE = Principal("alice")
BOB = Principal("bob")
ANON = Principal.anonymous()


def target(**overrides) -> AccessTarget:
    fields = {"kind": ResourceKind.FILE, "id": "f1", "owner_id": "alice"}
    fields.update(overrides)
    return AccessTarget(**fields)


def grant(role: str = "viewer", user_id: str = "bob", **overrides) -> Collaborator:
    return Collaborator(user_id=user_id, role=role, file_id="f1", **overrides)


class TestRole:
    def test_ordering(self):
        assert Role.EDITOR.covers(Role.COMMENTER)
        assert Role.COMMENTER.covers(Role.VIEWER)
        assert not Role.VIEWER.covers(Role.COMMENTER)

    def test_parse_invalid(self):
        with pytest.raises(ValueError, match="Invalid role"):
            Role.parse("owner")


class TestCanAccess:
    @pytest.mark.parametrize("required", list(Role))
    def test_owner_always_passes(self, required):
        assert can_access(ALICE, target(), required, NOW)

    def test_owner_sees_trashed(self):
        assert can_access(ALICE, target(is_trashed=True), Role.EDITOR, NOW)

    def test_stranger_denied(self):
        assert not can_access(BOB, target(), Role.VIEWER, NOW)

    def test_grant_covers_lower_roles(self):
        t = target(grants=[grant("commenter")])
        assert can_access(BOB, t, Role.VIEWER, NOW)
        assert can_access(BOB, t, Role.COMMENTER, NOW)
        assert not can_access(BOB, t, Role.EDITOR, NOW)

    def test_expired_grant_inert(self):
        t = target(grants=[grant("editor", expires_at=NOW - timedelta(seconds=1))])
        assert not can_access(BOB, t, Role.VIEWER, NOW)

    def test_future_expiry_passes(self):
        t = target(grants=[grant("editor", expires_at=NOW + timedelta(days=1))])
        assert can_access(BOB, t, Role.EDITOR, NOW)

    def test_grant_for_other_user_ignored(self):
        t = target(grants=[grant("editor", user_id="carol")])
        assert not can_access(BOB, t, Role.VIEWER, NOW)

    def test_public_anonymous_viewer_only(self):
        t = target(is_public=True)
        assert can_access(ANON, t, Role.VIEWER, NOW)
        assert not can_access(ANON, t, Role.COMMENTER, NOW)

    def test_private_anonymous_denied(self):
        assert not can_access(ANON, target(), Role.VIEWER, NOW)

    def test_trashed_hidden_from_collaborators(self):
        t = target(is_trashed=True, is_public=True, grants=[grant("editor")])
        assert not can_access(BOB, t, Role.VIEWER, NOW)
        assert not can_access(ANON, t, Role.VIEWER, NOW)


class TestEffectiveGrant:
    def test_duplicates_logged_and_most_permissive_wins(self, caplog):
        grants = [grant("viewer"), grant("editor"), grant("commenter")]
        with caplog.at_level(logging.ERROR, logger="sharebox.permissions"):
            best = effective_grant(grants, "bob", NOW)
        assert best is not None
        assert best.role == "editor"
        assert "Inconsistent state" in caplog.text

    def test_expired_duplicate_skipped(self):
        grants = [grant("editor", expires_at=NOW - timedelta(days=1)), grant("viewer")]
        best = effective_grant(grants, "bob", NOW)
        assert best is not None
        assert best.role == "viewer"

    def test_no_grant(self):
        assert effective_grant([], "bob", NOW) is None

    def test_resolve_role(self):
        t = target(grants=[grant("commenter")])
        assert resolve_role(BOB, t, NOW) is Role.COMMENTER
        assert resolve_role(ANON, t, NOW) is None


@pytest.fixture
def perms() -> PermissionService:
    return PermissionService(File, Folder, Collaborator)


async def _tree(session):
    """alice: /docs/reports/q1.pdf plus a private root file."""
    docs = Folder(owner_id="alice", name="docs", path="/docs")
    session.add(docs)
    await session.flush()
    reports = Folder(owner_id="alice", parent_id=docs.id, name="reports", path="/docs/reports")
    session.add(reports)
    await session.flush()
    q1 = File(owner_id="alice", folder_id=reports.id, original_name="q1.pdf", storage_key="alice/q1")
    loose = File(owner_id="alice", original_name="loose.txt", storage_key="alice/loose")
    session.add_all([q1, loose])
    await session.flush()
    return docs, reports, q1, loose


class TestPermissionService:
    async def test_folder_grant_covers_subtree(self, perms, async_session):
        docs, reports, q1, _ = await _tree(async_session)
        async_session.add(Collaborator(user_id="bob", folder_id=docs.id, role="editor"))
        await async_session.flush()

        assert await perms.can_access(async_session, BOB, ResourceKind.FILE, q1.id, Role.EDITOR)
        assert await perms.can_access(async_session, BOB, ResourceKind.FOLDER, reports.id)

    async def test_grant_does_not_leak_to_siblings(self, perms, async_session):
        _, reports, _, loose = await _tree(async_session)
        async_session.add(Collaborator(user_id="bob", folder_id=reports.id, role="viewer"))
        await async_session.flush()

        assert not await perms.can_access(async_session, BOB, ResourceKind.FILE, loose.id)

    async def test_ancestor_and_direct_grant_most_permissive(self, perms, async_session):
        docs, _, q1, _ = await _tree(async_session)
        async_session.add_all(
            [
                Collaborator(user_id="bob", folder_id=docs.id, role="viewer"),
                Collaborator(user_id="bob", file_id=q1.id, role="commenter"),
            ]
        )
        await async_session.flush()
        assert await perms.can_access(async_session, BOB, ResourceKind.FILE, q1.id, Role.COMMENTER)

    async def test_missing_resource(self, perms, async_session):
        assert await perms.load_target(async_session, ResourceKind.FILE, "nope") is None
        assert not await perms.can_access(async_session, ALICE, ResourceKind.FILE, "nope")

    async def test_require_hides_invisible(self, perms, async_session):
        _, _, q1, _ = await _tree(async_session)
        with pytest.raises(NotFoundError):
            await perms.require(async_session, BOB, ResourceKind.FILE, q1.id)

    async def test_require_forbids_insufficient_role(self, perms, async_session):
        _, _, q1, _ = await _tree(async_session)
        async_session.add(Collaborator(user_id="bob", file_id=q1.id, role="viewer"))
        await async_session.flush()
        with pytest.raises(ForbiddenError):
            await perms.require(async_session, BOB, ResourceKind.FILE, q1.id, Role.EDITOR)

    async def test_public_file_visible_to_anonymous(self, perms, async_session):
        _, _, _, loose = await _tree(async_session)
        loose.is_public = True
        await async_session.flush()
        t = await perms.require(async_session, ANON, ResourceKind.FILE, loose.id)
        assert t.owner_id == "alice"

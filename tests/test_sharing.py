"""Tests for share links: tokens, the grant engine and public access."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta

import pytest

import sharebox.sharing
from sharebox import Principal, Sharebox
from sharebox.events import AuditAction, AuditOutcome
from sharebox.exceptions import (
    ForbiddenError,
    InvalidCredentialError,
    NotFoundError,
    QuotaExhaustedError,
    ShareLinkExpiredError,
    ShareLinkInactiveError,
)
from sharebox.models import ShareLink
from sharebox.sharing import evaluate_link, generate_share_token, hash_password, verify_password
from sharebox.types import AccessDecision, DenialReason, DownloadMode
from sharebox.utils import utc_now

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def profiled_box(async_engine, store, settings, event_bus) -> Sharebox:
    """Sharebox that resolves owner display names."""
    names = {"alice": "Alice A."}

    async def _lookup(user_id: str) -> str | None:
        return names.get(user_id)

    return Sharebox(
        engine=async_engine,
        store=store,
        settings=settings,
        event_bus=event_bus,
        profile_lookup=_lookup,
    )


def make_link(**overrides) -> ShareLink:
    fields = {"owner_id": "alice", "file_id": "f1", "token": "tok"}
    fields.update(overrides)
    return ShareLink(**fields)


# =============================================================================
# Tokens and passwords
# =============================================================================


class TestTokens:
    def test_token_is_urlsafe_and_long(self):
        token = generate_share_token()
        assert len(token) >= 43
        assert all(c.isalnum() or c in "-_" for c in token)

    def test_tokens_differ(self):
        assert len({generate_share_token() for _ in range(50)}) == 50

    def test_short_entropy_rejected(self):
        with pytest.raises(ValueError, match="entropy"):
            generate_share_token(16)

    def test_password_hash_roundtrip(self):
        hashed = hash_password("s3cret")
        assert hashed != "s3cret"
        assert verify_password("s3cret", hashed)
        assert not verify_password("wrong", hashed)

    def test_unreadable_hash(self, caplog):
        with caplog.at_level(logging.WARNING, logger="sharebox.sharing"):
            assert not verify_password("x", "not-a-hash")


# =============================================================================
# Grant engine (pure)
# =============================================================================


class TestEvaluateLink:
    def test_missing(self):
        decision = evaluate_link(None)
        assert not decision.granted
        assert decision.reason is DenialReason.NOT_FOUND

    def test_granted(self):
        decision = evaluate_link(make_link(), now=NOW)
        assert decision.granted
        assert decision.reason is None

    def test_inactive_checked_before_expiry(self):
        link = make_link(is_active=False, expires_at=NOW - timedelta(days=1))
        assert evaluate_link(link, now=NOW).reason is DenialReason.INACTIVE

    def test_expiry_checked_before_quota(self):
        link = make_link(
            expires_at=NOW - timedelta(seconds=1), max_downloads=1, download_count=1
        )
        assert evaluate_link(link, now=NOW).reason is DenialReason.EXPIRED

    def test_expiry_at_exact_instant(self):
        assert evaluate_link(make_link(expires_at=NOW), now=NOW).reason is DenialReason.EXPIRED

    def test_quota_checked_before_password(self):
        link = make_link(max_downloads=2, download_count=2, password_hash=hash_password("pw"))
        assert evaluate_link(link, now=NOW).reason is DenialReason.QUOTA_EXHAUSTED

    def test_zero_max_downloads_is_unlimited(self):
        link = make_link(max_downloads=0, download_count=10_000)
        assert evaluate_link(link, now=NOW).granted

    def test_password_required_then_invalid(self):
        link = make_link(password_hash=hash_password("pw"))
        assert evaluate_link(link, None, NOW).reason is DenialReason.PASSWORD_REQUIRED
        assert evaluate_link(link, "", NOW).reason is DenialReason.PASSWORD_REQUIRED
        assert evaluate_link(link, "nope", NOW).reason is DenialReason.PASSWORD_INVALID
        assert evaluate_link(link, "pw", NOW).granted

    def test_expired_link_hides_password_state(self):
        link = make_link(expires_at=NOW - timedelta(days=1), password_hash=hash_password("pw"))
        assert evaluate_link(link, "nope", NOW).reason is DenialReason.EXPIRED


class TestDenialMapping:
    @pytest.mark.parametrize(
        ("reason", "status", "error"),
        [
            (DenialReason.NOT_FOUND, 404, NotFoundError),
            (DenialReason.INACTIVE, 403, ShareLinkInactiveError),
            (DenialReason.EXPIRED, 410, ShareLinkExpiredError),
            (DenialReason.QUOTA_EXHAUSTED, 403, QuotaExhaustedError),
            (DenialReason.PASSWORD_REQUIRED, 401, InvalidCredentialError),
            (DenialReason.PASSWORD_INVALID, 401, InvalidCredentialError),
            (DenialReason.DOWNLOAD_DISABLED, 403, ForbiddenError),
        ],
    )
    def test_status_and_error(self, reason, status, error):
        assert reason.http_status == status
        with pytest.raises(error, match=reason.message):
            AccessDecision.deny(reason).raise_for_denial()

    def test_granted_does_not_raise(self):
        AccessDecision.grant(make_link()).raise_for_denial()

    def test_denial_needs_reason(self):
        with pytest.raises(ValueError, match="reason"):
            AccessDecision(granted=False)

    def test_grant_needs_link(self):
        with pytest.raises(ValueError, match="link"):
            AccessDecision(granted=True)


# =============================================================================
# Link management
# =============================================================================


class TestCreateShareLink:
    async def test_owner_creates_file_link(self, box, alice):
        f = await box.upload_file(alice, "a.pdf", b"%PDF")
        link = await box.create_share_link(alice, file_id=f.id, description="for review")
        assert link.file_id == f.id
        assert link.folder_id is None
        assert link.is_active
        assert not link.has_password
        assert link.max_downloads == 0
        assert link.permission == "view"
        assert len(link.token) >= 43

    async def test_exactly_one_target(self, box, alice):
        f = await box.upload_file(alice, "a.pdf", b"%PDF")
        folder = await box.create_folder(alice, "docs")
        with pytest.raises(ValueError):
            await box.create_share_link(alice)
        with pytest.raises(ValueError):
            await box.create_share_link(alice, file_id=f.id, folder_id=folder.id)

    async def test_negative_max_downloads(self, box, alice):
        f = await box.upload_file(alice, "a.pdf", b"%PDF")
        with pytest.raises(ValueError):
            await box.create_share_link(alice, file_id=f.id, max_downloads=-1)

    async def test_invalid_permission(self, box, alice):
        f = await box.upload_file(alice, "a.pdf", b"%PDF")
        with pytest.raises(ValueError):
            await box.create_share_link(alice, file_id=f.id, permission="admin")

    async def test_stranger_sees_not_found(self, box, alice, bob):
        f = await box.upload_file(alice, "a.pdf", b"%PDF")
        with pytest.raises(NotFoundError):
            await box.create_share_link(bob, file_id=f.id)

    async def test_editor_forbidden_by_default(self, box, alice, bob):
        f = await box.upload_file(alice, "a.pdf", b"%PDF")
        await box.add_collaborator(alice, "file", f.id, "bob", "editor")
        with pytest.raises(ForbiddenError):
            await box.create_share_link(bob, file_id=f.id)

    async def test_editor_allowed_when_enabled(self, box, alice, bob):
        box.settings.allow_editor_share_links = True
        f = await box.upload_file(alice, "a.pdf", b"%PDF")
        await box.add_collaborator(alice, "file", f.id, "bob", "editor")
        await box.add_collaborator(alice, "file", f.id, "carol", "viewer")

        link = await box.create_share_link(bob, file_id=f.id)
        assert [x.id for x in await box.list_share_links(bob)] == [link.id]
        with pytest.raises(ForbiddenError):
            await box.create_share_link(Principal("carol"), file_id=f.id)

    async def test_trashed_target(self, box, alice):
        f = await box.upload_file(alice, "a.pdf", b"%PDF")
        await box.trash_file(alice, f.id)
        with pytest.raises(NotFoundError):
            await box.create_share_link(alice, file_id=f.id)

    async def test_update_and_list(self, box, alice):
        f = await box.upload_file(alice, "a.pdf", b"%PDF")
        link = await box.create_share_link(alice, file_id=f.id, password="pw")
        assert link.has_password

        updated = await box.update_share_link(
            alice, link.id, clear_password=True, max_downloads=3, description="v2"
        )
        assert not updated.has_password
        assert updated.max_downloads == 3
        assert updated.description == "v2"

        listed = await box.list_share_links(alice, file_id=f.id)
        assert [x.id for x in listed] == [link.id]
        assert (await box.get_share_link(alice, link.id)).description == "v2"

    async def test_other_user_cannot_manage(self, box, alice, bob):
        f = await box.upload_file(alice, "a.pdf", b"%PDF")
        link = await box.create_share_link(alice, file_id=f.id)
        with pytest.raises(NotFoundError):
            await box.revoke_share_link(bob, link.id)
        with pytest.raises(NotFoundError):
            await box.delete_share_link(bob, link.id)


class TestTokenCollisions:
    async def test_regenerates_on_existing_token(self, box, alice, monkeypatch, caplog):
        f = await box.upload_file(alice, "a.pdf", b"%PDF")
        first = await box.create_share_link(alice, file_id=f.id)

        fresh = "fresh-" + "x" * 40
        tokens = iter([first.token, fresh])
        monkeypatch.setattr(sharebox.sharing, "generate_share_token", lambda nbytes: next(tokens))

        with caplog.at_level(logging.WARNING, logger="sharebox.sharing"):
            second = await box.create_share_link(alice, file_id=f.id)
        assert second.token == fresh
        assert "collision" in caplog.text

    async def test_retries_transaction_on_unique_violation(self, box, alice, monkeypatch):
        f = await box.upload_file(alice, "a.pdf", b"%PDF")
        first = await box.create_share_link(alice, file_id=f.id)

        async def _never_exists(session, token):
            return False

        fresh = "fresh-" + "y" * 40
        tokens = iter([first.token, fresh])
        monkeypatch.setattr(box._links, "_token_exists", _never_exists)
        monkeypatch.setattr(sharebox.sharing, "generate_share_token", lambda nbytes: next(tokens))

        second = await box.create_share_link(alice, file_id=f.id)
        assert second.token == fresh
        assert len(await box.list_share_links(alice)) == 2


# =============================================================================
# Public access
# =============================================================================


class TestViewShare:
    async def test_file_projection(self, profiled_box, alice):
        box = profiled_box
        f = await box.upload_file(alice, "a.pdf", b"%PDF-data")
        link = await box.create_share_link(alice, file_id=f.id, description="hi")

        result = await box.view_share(link.token)
        assert result.success
        asset = result.asset
        assert asset is not None
        assert asset.kind == "file"
        assert asset.name == "a.pdf"
        assert asset.size_bytes == 9
        assert asset.view_count == 1
        assert asset.shared_by == "Alice A."
        assert not hasattr(asset, "storage_key")
        assert not hasattr(asset, "owner_id")

        again = await box.view_share(link.token)
        assert again.asset is not None
        assert again.asset.view_count == 2

    async def test_folder_projection_lists_live_children(self, box, alice):
        docs = await box.create_folder(alice, "docs")
        await box.create_folder(alice, "sub", parent_id=docs.id)
        await box.upload_file(alice, "b.txt", b"b", folder_id=docs.id)
        gone = await box.upload_file(alice, "gone.txt", b"g", folder_id=docs.id)
        await box.trash_file(alice, gone.id)
        link = await box.create_share_link(alice, folder_id=docs.id)

        result = await box.view_share(link.token)
        assert result.asset is not None
        assert result.asset.kind == "folder"
        assert result.asset.shared_by is None
        assert [(e.name, e.is_folder) for e in result.asset.entries] == [
            ("sub", True),
            ("b.txt", False),
        ]

    async def test_unknown_token(self, box, audit_events):
        result = await box.view_share("nope")
        assert not result.success
        assert result.reason is DenialReason.NOT_FOUND
        assert audit_events[-1].outcome is AuditOutcome.DENIED

    async def test_denied_view_not_counted(self, box, alice):
        f = await box.upload_file(alice, "a.pdf", b"%PDF")
        link = await box.create_share_link(alice, file_id=f.id, password="pw")
        denied = await box.view_share(link.token)
        assert denied.reason is DenialReason.PASSWORD_REQUIRED
        assert (await box.get_share_link(alice, link.id)).view_count == 0

    async def test_expired_folder_link(self, box, alice):
        docs = await box.create_folder(alice, "docs")
        link = await box.create_share_link(
            alice, folder_id=docs.id, expires_at=utc_now() - timedelta(hours=1)
        )
        result = await box.view_share(link.token)
        assert result.reason is DenialReason.EXPIRED
        assert result.reason.http_status == 410


class TestDownloadShare:
    async def test_quota_is_enforced(self, box, alice):
        f = await box.upload_file(alice, "a.pdf", b"%PDF")
        link = await box.create_share_link(alice, file_id=f.id, max_downloads=2)

        first = await box.download_share(link.token)
        second = await box.download_share(link.token)
        third = await box.download_share(link.token)

        assert first.success and second.success
        assert first.grant is not None
        assert first.grant.mode is DownloadMode.STREAM
        assert not third.success
        assert third.reason is DenialReason.QUOTA_EXHAUSTED
        assert (await box.get_share_link(alice, link.id)).download_count == 2
        assert (await box.get_file(alice, f.id)).download_count == 2

    async def test_concurrent_last_slot(self, file_box, alice):
        f = await file_box.upload_file(alice, "a.pdf", b"%PDF")
        link = await file_box.create_share_link(alice, file_id=f.id, max_downloads=1)

        results = await asyncio.gather(*(file_box.download_share(link.token) for _ in range(5)))

        assert sum(r.success for r in results) == 1
        assert {r.reason for r in results if not r.success} == {DenialReason.QUOTA_EXHAUSTED}
        assert (await file_box.get_share_link(alice, link.id)).download_count == 1

    async def test_password_flow(self, box, alice):
        f = await box.upload_file(alice, "a.pdf", b"%PDF")
        link = await box.create_share_link(alice, file_id=f.id, password="pw")

        assert (await box.download_share(link.token)).reason is DenialReason.PASSWORD_REQUIRED
        assert (await box.download_share(link.token, "bad")).reason is DenialReason.PASSWORD_INVALID
        assert (await box.download_share(link.token, "pw")).success

    async def test_download_disabled(self, box, alice):
        f = await box.upload_file(alice, "a.pdf", b"%PDF")
        link = await box.create_share_link(alice, file_id=f.id, allow_download=False)

        assert (await box.view_share(link.token)).success
        result = await box.download_share(link.token)
        assert result.reason is DenialReason.DOWNLOAD_DISABLED
        assert (await box.get_share_link(alice, link.id)).download_count == 0

    async def test_trashed_target_reads_as_missing(self, box, alice):
        f = await box.upload_file(alice, "a.pdf", b"%PDF")
        link = await box.create_share_link(alice, file_id=f.id)
        await box.trash_file(alice, f.id)

        assert (await box.download_share(link.token)).reason is DenialReason.NOT_FOUND
        assert (await box.view_share(link.token)).reason is DenialReason.NOT_FOUND

        await box.restore_file(alice, f.id)
        assert (await box.download_share(link.token)).success

    async def test_revoked_then_deleted(self, box, alice):
        f = await box.upload_file(alice, "a.pdf", b"%PDF")
        link = await box.create_share_link(alice, file_id=f.id)

        revoked = await box.revoke_share_link(alice, link.id)
        assert not revoked.is_active
        assert (await box.download_share(link.token)).reason is DenialReason.INACTIVE

        await box.delete_share_link(alice, link.id)
        assert (await box.download_share(link.token)).reason is DenialReason.NOT_FOUND

    async def test_folder_link_nested_file(self, box, alice):
        docs = await box.create_folder(alice, "docs")
        inner = await box.create_folder(alice, "inner", parent_id=docs.id)
        nested = await box.upload_file(alice, "n.txt", b"n", folder_id=inner.id)
        outside = await box.upload_file(alice, "o.txt", b"o")
        link = await box.create_share_link(alice, folder_id=docs.id)

        ok = await box.download_share(link.token, file_id=nested.id)
        assert ok.success
        assert ok.grant is not None
        assert ok.grant.filename == "n.txt"

        assert (await box.download_share(link.token, file_id=outside.id)).reason is (
            DenialReason.NOT_FOUND
        )
        assert (await box.download_share(link.token)).reason is DenialReason.NOT_FOUND

    async def test_file_link_rejects_other_file(self, box, alice):
        f = await box.upload_file(alice, "a.pdf", b"%PDF")
        other = await box.upload_file(alice, "b.pdf", b"%PDF")
        link = await box.create_share_link(alice, file_id=f.id)
        result = await box.download_share(link.token, file_id=other.id)
        assert result.reason is DenialReason.NOT_FOUND

    async def test_downloads_are_audited(self, box, alice, audit_events):
        f = await box.upload_file(alice, "a.pdf", b"%PDF")
        link = await box.create_share_link(alice, file_id=f.id, max_downloads=1)
        await box.download_share(link.token)
        await box.download_share(link.token)

        events = [e for e in audit_events if e.action is AuditAction.SHARE_DOWNLOAD]
        assert [e.outcome for e in events] == [AuditOutcome.SUCCESS, AuditOutcome.DENIED]
        assert events[1].detail == DenialReason.QUOTA_EXHAUSTED.value
        assert all(e.resource_id == link.id for e in events)

    async def test_authorize_does_not_consume(self, box, alice):
        f = await box.upload_file(alice, "a.pdf", b"%PDF")
        link = await box.create_share_link(alice, file_id=f.id, max_downloads=1)
        assert (await box.authorize_share(link.token)).granted
        assert (await box.authorize_share(link.token)).granted
        assert (await box.get_share_link(alice, link.id)).download_count == 0

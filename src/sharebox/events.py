"""EventBus and audit event types."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("sharebox.audit")


class AuditAction(Enum):
    """Domain operations that produce an audit record."""

    FILE_UPLOAD = "file_upload"
    FILE_UPDATE = "file_update"
    FILE_MOVE = "file_move"
    FILE_DOWNLOAD = "file_download"
    FOLDER_CREATE = "folder_create"
    FOLDER_UPDATE = "folder_update"
    FOLDER_MOVE = "folder_move"
    SHARE_CREATE = "share_create"
    SHARE_UPDATE = "share_update"
    SHARE_DELETE = "share_delete"
    SHARE_VIEW = "share_view"
    SHARE_DOWNLOAD = "share_download"
    COLLABORATOR_ADD = "collaborator_add"
    COLLABORATOR_UPDATE = "collaborator_update"
    COLLABORATOR_REMOVE = "collaborator_remove"
    TRASH = "trash"
    RESTORE = "restore"
    PURGE = "purge"
    EMPTY_TRASH = "empty_trash"
    TRASH_SWEEP = "trash_sweep"


class AuditOutcome(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    DENIED = "denied"


@dataclass(frozen=True, slots=True)
class AuditEvent:
    """Immutable record of a domain operation.

    Attributes:
        action: What was attempted.
        resource_type: ``"file"``, ``"folder"``, ``"share_link"``,
            ``"collaborator"`` or ``"trash"``.
        resource_id: Identifier of the affected record, when there is one.
        outcome: Whether the operation succeeded, failed, or was denied.
        user_id: Acting principal, ``None`` for anonymous share access.
        detail: Short human-readable context (never secrets).
    """

    action: AuditAction
    resource_type: str
    resource_id: str | None = None
    outcome: AuditOutcome = AuditOutcome.SUCCESS
    user_id: str | None = None
    detail: str = ""


class EventBus:
    """Dispatches audit events to registered handlers.

    Handlers are called sequentially in registration order.
    Handler exceptions are logged and never propagated to the emitter.
    """

    def __init__(self) -> None:
        self._handlers: list[Callable[..., Any]] = []

    def register(self, handler: Callable[..., Any]) -> None:
        """Append *handler*; it receives every emitted event."""
        self._handlers.append(handler)

    def unregister(self, handler: Callable[..., Any]) -> bool:
        """Remove first occurrence of *handler*. Return True if found."""
        try:
            self._handlers.remove(handler)
            return True
        except ValueError:
            return False

    async def emit(self, event: AuditEvent) -> None:
        """Dispatch *event* to all registered handlers."""
        for handler in self._handlers:
            try:
                await handler(event)
            except Exception:
                logger.warning(
                    "Audit handler %r failed for %s on %s %s",
                    handler,
                    event.action.value,
                    event.resource_type,
                    event.resource_id,
                    exc_info=True,
                )

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    def clear(self) -> None:
        """Remove all registered handlers."""
        self._handlers.clear()


async def log_audit_event(event: AuditEvent) -> None:
    """Handler that writes events to the ``sharebox.audit`` logger."""
    level = logging.INFO if event.outcome is AuditOutcome.SUCCESS else logging.WARNING
    audit_logger.log(
        level,
        "action=%s resource=%s:%s outcome=%s user=%s %s",
        event.action.value,
        event.resource_type,
        event.resource_id or "-",
        event.outcome.value,
        event.user_id or "anonymous",
        event.detail,
    )

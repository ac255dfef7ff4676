"""Name validation, materialized paths, storage keys, and time helpers."""

from __future__ import annotations

import mimetypes
import posixpath
import re
import uuid
from datetime import UTC, datetime

# =============================================================================
# Constants
# =============================================================================

MAX_NAME_LENGTH = 255
MAX_EXTENSION_LENGTH = 10
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Reserved filenames (Windows compatibility)
RESERVED_NAMES = {
    "CON", "PRN", "AUX", "NUL",
    "COM1", "COM2", "COM3", "COM4", "COM5", "COM6", "COM7", "COM8", "COM9",
    "LPT1", "LPT2", "LPT3", "LPT4", "LPT5", "LPT6", "LPT7", "LPT8", "LPT9",
}

_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")
_EXT_STRIP_RE = re.compile(r"[^a-z0-9]")
_OWNER_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


# =============================================================================
# Time
# =============================================================================


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def is_past(value: datetime | None, now: datetime | None = None) -> bool:
    """True when *value* is set and not in the future."""
    if value is None:
        return False
    return as_utc(value) <= (now or utc_now())


# =============================================================================
# Names and Materialized Paths
# =============================================================================


def validate_name(name: str) -> tuple[bool, str]:
    """Validate a folder or file display name.

    Returns:
        (is_valid, error_message) - error_message is empty if valid
    """
    if not name or not name.strip():
        return False, "Name must not be empty"

    if "\x00" in name:
        return False, "Name contains null bytes"

    for ch in name:
        code = ord(ch)
        if 0x01 <= code <= 0x1F:
            return False, f"Name contains control character: 0x{code:02x}"

    if "/" in name or "\\" in name:
        return False, "Name must not contain path separators"

    if name.strip() in (".", ".."):
        return False, f"Reserved name: {name}"

    if len(name) > MAX_NAME_LENGTH:
        return False, f"Name too long (max {MAX_NAME_LENGTH} characters)"

    base_name = name.upper().split(".")[0]
    if base_name in RESERVED_NAMES:
        return False, f"Reserved name: {name}"

    return True, ""


def validate_color(color: str) -> tuple[bool, str]:
    """Folder colors are empty or a ``#RRGGBB`` hex code."""
    if color and not _COLOR_RE.match(color):
        return False, f"Invalid color: {color!r}. Expected #RRGGBB."
    return True, ""


def join_folder_path(parent_path: str | None, name: str) -> str:
    """Materialized path for a folder named *name* under *parent_path*.

    Examples:
        join_folder_path(None, "docs") -> "/docs"
        join_folder_path("/docs", "2024") -> "/docs/2024"
    """
    if parent_path is None:
        return "/" + name
    return parent_path + "/" + name


def is_within(path: str, ancestor: str) -> bool:
    """True if *path* equals *ancestor* or lies beneath it.

    Matching respects segment boundaries: ``/docs2`` is not within ``/docs``.
    """
    return path == ancestor or path.startswith(ancestor + "/")


def path_depth(path: str) -> int:
    """Number of segments in a materialized path (``/a/b`` -> 2)."""
    return len([part for part in path.split("/") if part])


# =============================================================================
# Storage Keys and Content Types
# =============================================================================


def storage_extension(filename: str) -> str:
    """Sanitized extension for a storage key, including the dot, or ``""``.

    Examples:
        storage_extension("Report.PDF") -> ".pdf"
        storage_extension("../../etc/passwd") -> ""
        storage_extension("archive.tar.gz") -> ".gz"
    """
    _, ext = posixpath.splitext(posixpath.basename(filename.replace("\\", "/")))
    ext = _EXT_STRIP_RE.sub("", ext.lower())[:MAX_EXTENSION_LENGTH]
    return f".{ext}" if ext else ""


def make_storage_key(owner_id: str, filename: str) -> str:
    """Opaque, owner-namespaced object key: ``{owner_id}/{uuid hex}{.ext}``.

    Only the sanitized extension of the user-supplied name survives, so a
    key can never traverse out of the owner's namespace.
    """
    if not _OWNER_RE.match(owner_id):
        raise ValueError(f"Invalid owner id for storage key: {owner_id!r}")
    return f"{owner_id}/{uuid.uuid4().hex}{storage_extension(filename)}"


def guess_mime_type(filename: str) -> str:
    """Guess the MIME type of a file based on its name."""
    mime_type, _ = mimetypes.guess_type(filename)
    return mime_type or DEFAULT_CONTENT_TYPE

"""
Utility functions and compiled regex patterns for the Jane document server.

Contains path-safety checks, input validation and timestamp helpers.
"""

import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from urllib.parse import unquote

from .errors import InvalidParamsError, PathSecurityError

# Pre-compiled regex patterns
FRONTMATTER_PATTERN = re.compile(r'\A---[ \t]*\n(.*?\n)?---[ \t]*(?:\n|\Z)', re.DOTALL)
TOKEN_SPLIT_PATTERN = re.compile(r'\s+')
DRIVE_PATTERN = re.compile(r'^[A-Za-z]:')

DOCUMENT_SUFFIX = ".md"
MAX_DECODE_ROUNDS = 5


# ============== Timestamps ==============

def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def next_timestamp(previous: datetime) -> datetime:
    """A timestamp strictly later than `previous`, normally just now()."""
    now = utcnow()
    if now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def format_timestamp(value: datetime) -> str:
    """ISO-8601 with microseconds so that consecutive updates stay ordered."""
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


# ============== Security Validation ==============

def _decode(path_str: str) -> str:
    """Undo (possibly nested) percent-encoding and Windows separators."""
    decoded = path_str
    for _ in range(MAX_DECODE_ROUNDS):
        step = unquote(decoded)
        if step == decoded:
            break
        decoded = step
    return decoded.replace("\\", "/")


def validate_segment(value: str, field: str) -> str:
    """Validate a language or project name used as a single directory name.

    Raises:
        InvalidParamsError: If the name is empty
        PathSecurityError: If the name could address another directory
    """
    if not value or not value.strip():
        raise InvalidParamsError(f"{field} cannot be empty")

    decoded = _decode(value)
    if "\x00" in decoded:
        raise PathSecurityError(f"{field} contains a NUL byte")
    if "/" in decoded or decoded in (".", "..") or DRIVE_PATTERN.match(decoded):
        raise PathSecurityError(f"{field} must be a single directory name: {value}")
    return value


def normalize_document_path(path_str: str) -> str:
    """Normalize a document path to POSIX form.

    Raises:
        InvalidParamsError: If the path is empty
        PathSecurityError: If the path contains a NUL byte
    """
    if not path_str or not path_str.strip():
        raise InvalidParamsError("Path cannot be empty")
    if "\x00" in _decode(path_str):
        raise PathSecurityError("Path contains a NUL byte")
    return path_str.replace("\\", "/")


def require_markdown(path_str: str) -> str:
    """Check that a document path names a markdown file.

    Raises:
        InvalidParamsError: If the path does not name a markdown file
    """
    if not path_str.endswith(DOCUMENT_SUFFIX):
        raise InvalidParamsError(f"Document path must end with {DOCUMENT_SUFFIX}: {path_str}")
    return path_str


def resolve_within(root: Path, path_str: str) -> Path:
    """Resolve `path_str` under `root` and prove it stays strictly inside.

    Both the literal path and its percent-decoded form are canonicalized
    (resolving `.`, `..` and symlinks); either one escaping the root is a
    security failure, never a silent correction.

    Args:
        root: The directory the path must stay within
        path_str: Relative path supplied by the caller

    Returns:
        The resolved absolute Path

    Raises:
        PathSecurityError: If the path escapes `root`
    """
    root_resolved = root.resolve()
    literal = path_str.replace("\\", "/")

    for candidate in (literal, _decode(path_str)):
        if candidate.startswith("/") or DRIVE_PATTERN.match(candidate):
            raise PathSecurityError(f"Absolute paths are not allowed: {path_str}")

        full_path = (root_resolved / candidate).resolve()
        if full_path == root_resolved or not full_path.is_relative_to(root_resolved):
            raise PathSecurityError(f"Path escapes its category directory: {path_str}")

    return (root_resolved / literal).resolve()


def relative_posix(path: Path, root: Path) -> str:
    """Relative path of `path` under `root` in POSIX form."""
    return path.relative_to(root).as_posix()


def is_hidden(rel_path: Path) -> bool:
    """True when any component of a relative path starts with a dot."""
    return any(part.startswith(".") for part in rel_path.parts)


# ============== Input Validation ==============

def validate_title(title: str, max_length: int) -> str:
    """Validate a document title.

    Raises:
        InvalidParamsError: If the title is blank or too long
    """
    if not title or not title.strip():
        raise InvalidParamsError("Title cannot be empty")

    title = title.strip()
    if len(title) > max_length:
        raise InvalidParamsError(f"Title exceeds maximum length of {max_length} characters")
    return title


def validate_content_size(content: str, max_size: int) -> str:
    """Validate content size.

    Raises:
        InvalidParamsError: If the content exceeds the size limit
    """
    content_bytes = len(content.encode("utf-8"))

    if content_bytes > max_size:
        max_mb = max_size / (1024 * 1024)
        actual_mb = content_bytes / (1024 * 1024)
        raise InvalidParamsError(
            f"Content size ({actual_mb:.2f}MB) exceeds maximum allowed size ({max_mb}MB)"
        )
    return content


def normalize_newlines(text: str) -> str:
    """Convert CRLF/CR line endings to LF."""
    return text.replace("\r\n", "\n").replace("\r", "\n")

"""
Utility functions for the RealtimeDB client.

Includes record id generation, time helpers and document path validation.
"""

import hashlib
import random
import secrets
import string
import time
from datetime import datetime, timezone
from typing import List

from .errors import InvalidPath

_AUTO_ID_ALPHABET = string.ascii_letters + string.digits
_RECORD_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits

PENDING_PREFIX = "pending-"


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def epoch_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def generate_record_id(prefix: str) -> str:
    """
    Generate a deferred record id: ``<prefix>-<epoch ms>-<7 random chars>``.

    The millisecond component keeps ids roughly time ordered for replay,
    the random suffix keeps concurrent submissions unique.
    """
    suffix = "".join(random.choices(_RECORD_SUFFIX_ALPHABET, k=7))
    return f"{prefix}-{epoch_ms()}-{suffix}"


def auto_id() -> str:
    """20 character document id, same shape as engine generated ids."""
    return "".join(secrets.choice(_AUTO_ID_ALPHABET) for _ in range(20))


def replay_document_id(record_id: str) -> str:
    """Deterministic document id for replaying a deferred create."""
    return hashlib.sha1(record_id.encode()).hexdigest()[:20]


def split_path(path: str) -> List[str]:
    """Split a slash separated path, rejecting empty segments."""
    if not isinstance(path, str) or not path.strip("/"):
        raise InvalidPath(f"empty path: {path!r}")
    segments = path.strip("/").split("/")
    if any(not s for s in segments):
        raise InvalidPath(f"path has empty segment: {path!r}")
    return segments


def collection_path(path: str) -> str:
    """Normalize and validate a collection path (odd number of segments)."""
    segments = split_path(path)
    if len(segments) % 2 != 1:
        raise InvalidPath(f"not a collection path: {path!r}")
    return "/".join(segments)


def document_path(path: str) -> str:
    """Normalize and validate a document path (even number of segments)."""
    segments = split_path(path)
    if len(segments) % 2 != 0:
        raise InvalidPath(f"not a document path: {path!r}")
    return "/".join(segments)


def parent_collection(path: str) -> str:
    """Collection path that contains the given document path."""
    return document_path(path).rsplit("/", 1)[0]


def is_pending_path(path: str) -> bool:
    """True for placeholder document paths handed out for deferred creates."""
    return path.rsplit("/", 1)[-1].startswith(PENDING_PREFIX)

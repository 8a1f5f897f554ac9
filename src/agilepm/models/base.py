"""Shared helpers for AgilePM models."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4


def generate_id(prefix: str) -> str:
    """Generate a unique ID with the given prefix.

    Examples:
        generate_id("whk") -> "whk_a1b2c3d4e5f6"
        generate_id("dlv") -> "dlv_a1b2c3d4e5f6"
    """
    return f"{prefix}_{uuid4().hex[:12]}"


def utc_now() -> datetime:
    return datetime.now(UTC)


def truncate(text: str | None, limit: int) -> str | None:
    """Cut ``text`` to at most ``limit`` characters, keeping None as None."""
    if text is None:
        return None
    return text[:limit]

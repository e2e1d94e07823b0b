"""Helpers for turning free text into length-limited slugs and branch names."""

from __future__ import annotations

import hashlib
import re
from datetime import datetime, timezone
from typing import Pattern

_SLUG_PATTERN: Pattern[str] = re.compile(r"[^a-z0-9_.-]+")
_HYPHEN_COLLAPSE = re.compile(r"-{2,}")


def slugify(value: str | None, *, fallback: str = "item", max_length: int = 80) -> str:
    """Normalise ``value`` into a lowercase, filesystem-friendly slug."""
    source = (value or "").strip().lower() or fallback.lower()
    slug = _normalize(source) or _normalize(fallback.lower()) or "item"
    if len(slug) > max_length:
        slug = abbreviate_slug(slug, max_length=max_length)
    return slug


def abbreviate_slug(segment: str, *, max_length: int = 80) -> str:
    """Trim ``segment`` to ``max_length`` while preserving uniqueness via hashing."""
    slug = segment.strip("-") or "item"
    if len(slug) <= max_length:
        return slug

    digest = hashlib.sha256(slug.encode("utf-8")).hexdigest()[:8]
    prefix_length = max(max_length - len(digest) - 1, 1)
    prefix = slug[:prefix_length].rstrip("-.") or slug[:prefix_length]
    return f"{prefix}-{digest}"


def branch_name(instruction: str, *, prefix: str = "redit", now: datetime | None = None) -> str:
    """Build a unique, git-safe branch name for an instruction."""
    moment = now or datetime.now(timezone.utc)
    words = re.findall(r"[a-z0-9]+", instruction.lower())[:6]
    topic = slugify("-".join(words), fallback="changes", max_length=40).strip(".")
    return f"{prefix}/{topic}-{moment.strftime('%Y%m%d%H%M%S')}"


def _normalize(value: str) -> str:
    slug = _SLUG_PATTERN.sub("-", value)
    slug = _HYPHEN_COLLAPSE.sub("-", slug)
    return slug.strip("-")


__all__ = ["abbreviate_slug", "branch_name", "slugify"]

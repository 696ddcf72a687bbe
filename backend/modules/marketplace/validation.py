"""Input normalization shared by tasks, applications and profiles."""

from __future__ import annotations

from collections.abc import Iterable

from shared.errors import ValidationError


def normalize_skills(skills: Iterable[str] | None, cap: int) -> list[str]:
    """Lowercase, strip and de-duplicate skills, preserving first-seen order."""
    seen: dict[str, None] = {}
    for raw in skills or ():
        if not isinstance(raw, str):
            raise ValidationError("Skills must be strings")
        skill = raw.strip().lower()
        if skill:
            seen.setdefault(skill, None)
    if len(seen) > cap:
        raise ValidationError(f"At most {cap} skills are allowed", count=len(seen))
    return list(seen)


def require_text(value: str | None, field: str, max_len: int) -> str:
    """Strip ``value`` and check it is non-empty and within ``max_len``."""
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field} is required")
    if len(text) > max_len:
        raise ValidationError(f"{field} must be at most {max_len} characters")
    return text

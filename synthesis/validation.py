"""
Input validation and sanitization shared by the stores.

All checks raise ``ValidationError`` and run before anything is written.
"""

import re
from enum import Enum
from typing import Optional
from urllib.parse import urlparse
from uuid import UUID

from .errors import ValidationError

_ANGLE_BRACKETS = re.compile(r"[<>]")


def sanitize(value: Optional[str]) -> Optional[str]:
    """Trim whitespace and strip angle brackets. ``None`` passes through."""
    if value is None:
        return None
    return _ANGLE_BRACKETS.sub("", value.strip())


def sanitize_optional(value: Optional[str]) -> Optional[str]:
    """Like ``sanitize`` but collapses blank strings to ``None``."""
    value = sanitize(value)
    return value or None


def require_text(value: Optional[str], field_name: str) -> str:
    """Sanitize a required text field and reject it if nothing is left."""
    cleaned = sanitize(value)
    if not cleaned:
        raise ValidationError(f"{field_name} is required", details={"field": field_name})
    return cleaned


def is_valid_url(url: str) -> bool:
    """True for absolute URIs: a scheme plus a host or a path."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if not parsed.scheme or not re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*$", parsed.scheme):
        return False
    if any(ch.isspace() for ch in url):
        return False
    return bool(parsed.netloc or parsed.path)


def validate_url(url: Optional[str]) -> Optional[str]:
    """Return a cleaned URL (or ``None`` for blank) or raise."""
    if url is None:
        return None
    url = url.strip()
    if not url:
        return None
    if not is_valid_url(url):
        raise ValidationError("Invalid URL format", details={"url": url})
    return url


def validate_importance(score) -> int:
    if isinstance(score, bool) or not isinstance(score, int):
        raise ValidationError(
            "importance_score must be an integer",
            details={"importance_score": score},
        )
    if not 1 <= score <= 10:
        raise ValidationError(
            "importance_score must be between 1 and 10",
            details={"importance_score": score},
        )
    return score


def coerce_enum(enum_cls: type[Enum], value, field_name: str):
    """Accept an enum member or its value; raise on anything else."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        choices = ", ".join(e.value for e in enum_cls)
        raise ValidationError(
            f"{field_name} must be one of: {choices}",
            details={"field": field_name, "value": value},
        ) from None


def coerce_uuid(value, field_name: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(
            f"{field_name} is not a valid id",
            details={"field": field_name, "value": value},
        ) from None


def clamp_strength(strength) -> float:
    """Clamp a connection strength into [0, 1]."""
    try:
        strength = float(strength)
    except (TypeError, ValueError):
        raise ValidationError("strength must be a number", details={"strength": strength}) from None
    if strength != strength:  # NaN
        raise ValidationError("strength must be a number", details={"strength": strength})
    return max(0.0, min(1.0, strength))

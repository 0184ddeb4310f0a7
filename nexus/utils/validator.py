"""Input validation: checks caller-supplied records before any generation call."""

from typing import Any, Iterable, Mapping


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


def missing_fields(record: Mapping[str, Any], required: Iterable[str], prefix: str = "") -> list[str]:
    """Return the required keys that are absent or blank in record, in the given order."""
    return [f"{prefix}{name}" for name in required if _is_blank(record.get(name))]


def invalid_choice(value: Any, allowed: Iterable[str], field: str) -> str | None:
    """Return an issue string if value is not one of allowed, else None."""
    allowed = tuple(allowed)
    if value in allowed:
        return None
    return f"{field} (must be one of: {', '.join(allowed)})"

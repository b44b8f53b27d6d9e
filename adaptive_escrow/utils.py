# adaptive_escrow/utils.py
from datetime import datetime, timezone
from typing import Any, Optional

from adaptive_escrow.errors import InvalidInput


def utcnow() -> datetime:
    """Naive UTC "now", matching what the DB columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.replace(microsecond=0).isoformat() + "Z" if dt else None


def parse_iso(value: Any, field: str) -> datetime:
    """Parse an ISO-8601 timestamp into naive UTC; raises InvalidInput."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(raw)
        except ValueError:
            raise InvalidInput(f"{field} must be a valid ISO-8601 date", {"field": field, "value": value})
    else:
        raise InvalidInput(f"{field} must be a valid ISO-8601 date", {"field": field, "value": value})

    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def as_int(value: Any, field: str) -> int:
    """Coerce request values ("10", 10) to int; floats with a fraction and bools are rejected."""
    if isinstance(value, bool):
        raise InvalidInput(f"{field} must be an integer", {"field": field, "value": value})
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip(), 10)
        except ValueError:
            pass
    raise InvalidInput(f"{field} must be an integer", {"field": field, "value": value})


def check_range(value: int, field: str, lo: int, hi: int) -> int:
    if value < lo or value > hi:
        raise InvalidInput(
            f"{field} must be between {lo} and {hi}",
            {"field": field, "min": lo, "max": hi, "value": value},
        )
    return value


MAX_PAGE_SIZE = 100
MAX_OFFSET = 100000


def query_int(args, name: str, default: int, lo: int = 0, hi: int = MAX_PAGE_SIZE) -> int:
    """Bounded integer query parameter (``limit``, ``offset``); raises InvalidInput."""
    return check_range(as_int(args.get(name, default), name), name, lo, hi)

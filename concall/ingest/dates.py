from __future__ import annotations

from datetime import date, datetime
from typing import Callable

from concall.common.errors import ValidationError

from .models import DateRange

# Tried in order; the first that parses wins (so 10/11/2025 is read as MM/DD).
_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d",
    "%d-%m-%Y",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%Y%m%d",
    "%B %d, %Y",
    "%d %B %Y",
)


def parse_human_date(raw: str) -> date:
    """
    Parse a user-supplied date.

    Accepts 2025-10-18, 18-10-2025, 10/18/2025, 18/10/2025, 20251018, non-padded
    variants of the dashed forms, "October 18, 2025", "18 October 2025" and RFC 3339
    timestamps.
    """
    s = (raw or "").strip()
    for fmt in _FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue

    iso = s[:-1] + "+00:00" if s.endswith("Z") else s
    try:
        return datetime.fromisoformat(iso).date()
    except ValueError:
        pass

    raise ValidationError(
        f"unable to parse date {raw!r}. Supported formats: YYYY-MM-DD, DD-MM-YYYY, MM/DD/YYYY, DD/MM/YYYY, YYYYMMDD"
    )


def resolve_date_range(
    from_raw: str | None,
    to_raw: str | None,
    *,
    today: Callable[[], date] = date.today,
) -> DateRange:
    """
    Build the feed query range. Missing ends default to today; from > to is rejected.
    """
    try:
        start = parse_human_date(from_raw) if (from_raw or "").strip() else today()
    except ValidationError as e:
        raise ValidationError(f"invalid 'from' date: {e}") from e
    try:
        end = parse_human_date(to_raw) if (to_raw or "").strip() else today()
    except ValidationError as e:
        raise ValidationError(f"invalid 'to' date: {e}") from e

    if start > end:
        raise ValidationError(f"'from' date ({start.isoformat()}) cannot be after 'to' date ({end.isoformat()})")
    return DateRange(start=start, end=end)

from __future__ import annotations

import enum
from calendar import monthrange
from datetime import date, datetime, time, timedelta, timezone

END_OF_DAY = time(23, 59, 59)
DEFAULT_MONTHLY_DUE_DAY = 31
DEFAULT_FIRST_CUTOFF_DAY = 15
DEFAULT_SECOND_CUTOFF_DAY = 30


class DeadlineOutcome(str, enum.Enum):
    ON_TIME = "ON_TIME"
    LATE = "LATE"


def _normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)

    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


def civil_timezone(offset_hours: float) -> timezone:
    return timezone(timedelta(hours=offset_hours))


def parse_time_of_day(raw: time | str | None) -> time:
    if raw is None:
        return END_OF_DAY
    if isinstance(raw, time):
        return raw.replace(tzinfo=None)

    value = raw.strip()
    if not value:
        return END_OF_DAY
    parts = value.split(":")
    if len(parts) not in {2, 3}:
        raise ValueError(f"Invalid time of day: {raw!r}")
    hour = int(parts[0])
    minute = int(parts[1])
    second = int(float(parts[2])) if len(parts) == 3 else 0
    return time(hour, minute, second)


def _clamp_day(year: int, month: int, day: int) -> int:
    return max(1, min(day, monthrange(year, month)[1]))


def resolve_due_date(
    scheduled_date: date,
    frequency: str | None = None,
    *,
    due_day_of_month: int | None = None,
    first_cutoff_day: int | None = None,
    second_cutoff_day: int | None = None,
) -> date:
    """Civil day a task falls due.

    Monthly routines are due on ``due_day_of_month`` of the scheduled month.
    Biweekly routines are due on the first or second cut-off depending on
    which half of the month the task was scheduled in. Days past the end of
    the month fall back to its last day. Every other frequency is due on the
    scheduled date itself.
    """
    year, month = scheduled_date.year, scheduled_date.month
    if frequency == "mensual":
        day = due_day_of_month or DEFAULT_MONTHLY_DUE_DAY
    elif frequency == "quincenal":
        if scheduled_date.day <= 15:
            day = first_cutoff_day or DEFAULT_FIRST_CUTOFF_DAY
        else:
            day = second_cutoff_day or DEFAULT_SECOND_CUTOFF_DAY
    else:
        return scheduled_date
    return date(year, month, _clamp_day(year, month, day))


def resolve_deadline_utc(
    scheduled_date: date,
    time_of_day: time | str | None,
    *,
    offset_hours: float,
) -> datetime:
    local_deadline = datetime.combine(
        scheduled_date,
        parse_time_of_day(time_of_day),
        tzinfo=civil_timezone(offset_hours),
    )
    return local_deadline.astimezone(timezone.utc)


def evaluate_deadline(deadline_utc: datetime, now_utc: datetime | None = None) -> DeadlineOutcome:
    if _normalize_ts(now_utc) <= _normalize_ts(deadline_utc):
        return DeadlineOutcome.ON_TIME
    return DeadlineOutcome.LATE


def civil_today(now_utc: datetime | None = None, *, offset_hours: float) -> date:
    return _normalize_ts(now_utc).astimezone(civil_timezone(offset_hours)).date()

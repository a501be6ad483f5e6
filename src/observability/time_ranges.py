"""Time-range presets resolved to half-open ``[since, until)`` UTC windows.

Presets resolve against ``now`` at call time. Passing an explicit ``now``
makes resolution reproducible (reports, tests); dashboards leave it unset.
Calendar presets follow a Sunday-start week.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from src.errors import ValidationError
from src.models.common import ensure_utc, utc_now


@dataclass(frozen=True)
class TimeWindow:
    """A resolved preset. ``None`` bounds are open."""

    preset: str
    since: datetime | None
    until: datetime | None

    def contains(self, ts: datetime | None) -> bool:
        if ts is None:
            return self.since is None and self.until is None
        if self.since is not None and ts < self.since:
            return False
        if self.until is not None and ts >= self.until:
            return False
        return True

    def to_dict(self) -> dict:
        return {
            "preset": self.preset,
            "since": self.since.isoformat() if self.since else None,
            "until": self.until.isoformat() if self.until else None,
        }


def _start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _start_of_month(now: datetime) -> datetime:
    return _start_of_day(now).replace(day=1)


def _add_months(start: datetime, months: int) -> datetime:
    index = start.month - 1 + months
    return start.replace(year=start.year + index // 12, month=index % 12 + 1)


def _today(now: datetime) -> tuple[datetime, datetime]:
    start = _start_of_day(now)
    return start, start + timedelta(days=1)


def _yesterday(now: datetime) -> tuple[datetime, datetime]:
    start = _start_of_day(now)
    return start - timedelta(days=1), start


def _week(now: datetime) -> tuple[datetime, datetime]:
    # weekday(): Monday=0 .. Sunday=6
    start = _start_of_day(now) - timedelta(days=(now.weekday() + 1) % 7)
    return start, start + timedelta(days=7)


def _month(now: datetime) -> tuple[datetime, datetime]:
    start = _start_of_month(now)
    return start, _add_months(start, 1)


def _quarter(now: datetime) -> tuple[datetime, datetime]:
    start = _start_of_month(now).replace(month=3 * ((now.month - 1) // 3) + 1)
    return start, _add_months(start, 3)


def _year(now: datetime) -> tuple[datetime, datetime]:
    start = _start_of_month(now).replace(month=1)
    return start, start.replace(year=start.year + 1)


def _last_days(days: int) -> Callable[[datetime], tuple[datetime, datetime]]:
    def resolve(now: datetime) -> tuple[datetime, datetime]:
        return now - timedelta(days=days), now
    return resolve


PRESETS: dict[str, Callable[[datetime], tuple[datetime, datetime]]] = {
    "today": _today,
    "yesterday": _yesterday,
    "week": _week,
    "month": _month,
    "quarter": _quarter,
    "year": _year,
    "last7days": _last_days(7),
    "last30days": _last_days(30),
    "last90days": _last_days(90),
}

ALL_TIME = "all"


def available_presets() -> list[str]:
    return [*PRESETS, ALL_TIME]


def resolve_time_range(preset: str, *, now: datetime | None = None) -> TimeWindow:
    """Resolve ``preset`` into an absolute window.

    Raises:
        ValidationError: Unknown preset name.
    """
    if preset == ALL_TIME:
        return TimeWindow(preset=preset, since=None, until=None)
    try:
        resolve = PRESETS[preset]
    except KeyError:
        raise ValidationError(
            f"Unknown time range {preset!r}; expected one of: {', '.join(available_presets())}",
        ) from None
    since, until = resolve(ensure_utc(now) if now is not None else utc_now())
    return TimeWindow(preset=preset, since=since, until=until)

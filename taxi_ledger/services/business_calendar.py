from __future__ import annotations

import random
import re
from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from functools import lru_cache
from typing import Any, Iterator, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from taxi_ledger.errors import InvalidConfig
from taxi_ledger.logging_utils import get_logger
from taxi_ledger.models import RecordMode
from taxi_ledger.schemas import AnySalesRecord, BillingPeriodConfig
from taxi_ledger.settings import get_settings

logger = get_logger("business_calendar")

DEFAULT_TIMEZONE = "Asia/Tokyo"
MAX_SHIMEBI_DAY = 28
END_OF_MONTH = 0
# Python weekday numbers for Wednesday and Sunday.
DUTY_DAY_EXCLUDED_WEEKDAYS = frozenset({2, 6})

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MS = timedelta(milliseconds=1)


@lru_cache
def _business_timezone() -> ZoneInfo:
    raw_name = (get_settings().business_timezone or "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("business_timezone_fallback", extra={"configured": raw_name})
        return ZoneInfo(DEFAULT_TIMEZONE)


def _zone(tz: tzinfo | None) -> tzinfo:
    return tz if tz is not None else _business_timezone()


def to_epoch_ms(value: datetime, tz: tzinfo | None = None) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=_zone(tz))
    return (value - _EPOCH) // _MS


def local_datetime(timestamp_ms: int, tz: tzinfo | None = None) -> datetime:
    return (_EPOCH + timedelta(milliseconds=timestamp_ms)).astimezone(_zone(tz))


def resolve_business_date(timestamp_ms: int, start_hour: int, tz: tzinfo | None = None) -> date:
    """Business day containing ``timestamp_ms``.

    A business day runs from ``start_hour:00`` on calendar day D up to the
    same hour on D+1, so anything earlier than ``start_hour`` belongs to the
    previous calendar day.
    """
    local = local_datetime(timestamp_ms, tz)
    if local.hour < start_hour:
        return local.date() - timedelta(days=1)
    return local.date()


def format_business_date(day: date) -> str:
    return f"{day.year:04d}/{day.month:02d}/{day.day:02d}"


def business_date_label(timestamp_ms: int, start_hour: int, tz: tzinfo | None = None) -> str:
    return format_business_date(resolve_business_date(timestamp_ms, start_hour, tz))


def record_business_date(record: AnySalesRecord, start_hour: int, tz: tzinfo | None = None) -> date:
    if record.mode == RecordMode.SIMPLE_SUMMARY:
        return record.business_date
    return resolve_business_date(record.timestamp, start_hour, tz)


def business_day_bounds_ms(day: date, start_hour: int, tz: tzinfo | None = None) -> tuple[int, int]:
    zone = _zone(tz)
    start_local = datetime.combine(day, time(hour=start_hour), tzinfo=zone)
    end_local = datetime.combine(day + timedelta(days=1), time(hour=start_hour), tzinfo=zone)
    return to_epoch_ms(start_local), to_epoch_ms(end_local)


def format_business_time(timestamp_ms: int, start_hour: int, tz: tzinfo | None = None) -> str:
    """HH:MM on a 30-hour clock: 01:30 after a 09:00 start reads as 25:30."""
    local = local_datetime(timestamp_ms, tz)
    if local.hour < start_hour:
        return f"{local.hour + 24}:{local.minute:02d}"
    return f"{local.hour:02d}:{local.minute:02d}"


@dataclass(frozen=True)
class BillingPeriod:
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def days(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)

    @property
    def day_count(self) -> int:
        return (self.end - self.start).days + 1

    @property
    def start_label(self) -> str:
        return format_business_date(self.start)

    @property
    def end_label(self) -> str:
        return format_business_date(self.end)

    @property
    def month_key(self) -> str:
        return f"{self.end.year:04d}-{self.end.month:02d}"


def days_in_month(year: int, month: int) -> int:
    return monthrange(year, month)[1]


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _closing_date(year: int, month: int, shimebi_day: int) -> date:
    return date(year, month, min(shimebi_day, days_in_month(year, month)))


def billing_period(
    reference: date | datetime,
    shimebi_day: int,
    start_hour: int = 0,
    tz: tzinfo | None = None,
) -> BillingPeriod:
    """Inclusive billing period containing ``reference``.

    A ``date`` is taken as a business date already; a ``datetime`` is first
    resolved to its business date with ``start_hour``. ``shimebi_day`` 0 (or
    below) closes on the last day of the month. Closing days past the end of
    a month clamp to that month's last day and the next period starts the day
    after, so consecutive periods never overlap or leave gaps.
    """
    if isinstance(reference, datetime):
        day = resolve_business_date(to_epoch_ms(reference, tz), start_hour, tz)
    else:
        day = reference

    if shimebi_day <= END_OF_MONTH:
        return BillingPeriod(
            start=day.replace(day=1),
            end=day.replace(day=days_in_month(day.year, day.month)),
        )

    if day.day <= shimebi_day:
        closing_year, closing_month = day.year, day.month
    else:
        closing_year, closing_month = _shift_month(day.year, day.month, 1)

    end = _closing_date(closing_year, closing_month, shimebi_day)
    previous_year, previous_month = _shift_month(closing_year, closing_month, -1)
    start = _closing_date(previous_year, previous_month, shimebi_day) + timedelta(days=1)
    return BillingPeriod(start=start, end=end)


def generate_default_duty_days(
    reference: date | datetime,
    shimebi_day: int,
    start_hour: int,
    *,
    count: int | None = None,
    rng: random.Random | None = None,
    tz: tzinfo | None = None,
) -> list[date]:
    period = billing_period(reference, shimebi_day, start_hour, tz)
    sample_size = get_settings().duty_day_sample_size if count is None else count
    candidates = [day for day in period.days() if day.weekday() not in DUTY_DAY_EXCLUDED_WEEKDAYS]
    (rng or random.Random()).shuffle(candidates)
    return sorted(candidates[: max(0, sample_size)])


def _coerce_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and re.fullmatch(r"-?\d+", value.strip(), re.ASCII):
        return int(value.strip())
    return None


def _pick(raw: Mapping[str, Any], *keys: str) -> tuple[bool, Any]:
    for key in keys:
        if key in raw and raw[key] is not None:
            return True, raw[key]
    return False, None


def parse_billing_config(raw: Mapping[str, Any] | None, *, strict: bool = False) -> BillingPeriodConfig:
    """Validate a stored ``{shimebiDay, businessStartHour}`` mapping.

    Missing fields take the configured defaults (closing day 20, start hour
    9). Malformed or out-of-range fields raise ``InvalidConfig`` in strict
    mode; otherwise they are replaced by the same defaults and a
    ``billing_config_fallback`` warning is logged.
    """
    settings = get_settings()
    source = raw or {}
    fields = (
        ("shimebi_day", ("shimebiDay", "shimebi_day"), 0, MAX_SHIMEBI_DAY, settings.default_shimebi_day),
        (
            "business_start_hour",
            ("businessStartHour", "business_start_hour"),
            0,
            23,
            settings.default_business_start_hour,
        ),
    )

    resolved: dict[str, int] = {}
    for name, keys, lower, upper, default in fields:
        present, value = _pick(source, *keys)
        if not present:
            resolved[name] = default
            continue

        number = _coerce_int(value)
        if number is not None and lower <= number <= upper:
            resolved[name] = number
            continue

        if strict:
            raise InvalidConfig(name, value, f"{name} must be an integer between {lower} and {upper}.")
        logger.warning(
            "billing_config_fallback",
            extra={"field": name, "invalid_value": value, "default": default},
        )
        resolved[name] = default

    return BillingPeriodConfig(**resolved)

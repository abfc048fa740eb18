from __future__ import annotations

import enum
from collections import defaultdict
from datetime import date, datetime, tzinfo
from typing import Iterable

from taxi_ledger.models import PaymentMethod, RecordMode, RideType
from taxi_ledger.schemas import (
    AnySalesRecord,
    BillingPeriodConfig,
    DailyTotals,
    GenderSplit,
    PaymentShare,
    PeriodStats,
    RideTypeTotals,
)
from taxi_ledger.services.business_calendar import (
    BillingPeriod,
    billing_period,
    format_business_time,
    local_datetime,
    record_business_date,
)
from taxi_ledger.services.reconciler import (
    DailyRecordReconciler,
    dedupe_by_id,
    group_by_business_date,
    reconcile_day,
)
from taxi_ledger.services.record_store import RecordStore
from taxi_ledger.services.revenue_calc import (
    gross_amount,
    is_dispatch,
    net_of_tax,
    percent_of,
    ride_count,
    safe_average,
    split_payment,
    tax_amount,
)

HOUR_BUCKET_COUNT = 8
HOURS_PER_BUCKET = 3
WEEKDAY_COUNT = 7


class Breakdown(str, enum.Enum):
    DAILY = "DAILY"
    PAYMENT_METHOD = "PAYMENT_METHOD"
    HOUR_BUCKET = "HOUR_BUCKET"
    WEEKDAY = "WEEKDAY"
    GENDER = "GENDER"
    RIDE_TYPE = "RIDE_TYPE"


ALL_BREAKDOWNS = frozenset(Breakdown)


def sunday_first_weekday(day: date) -> int:
    return (day.weekday() + 1) % WEEKDAY_COUNT


def _daily_totals(
    day: date,
    mode: RecordMode,
    records: list[AnySalesRecord],
    start_hour: int,
    tz: tzinfo | None,
) -> DailyTotals:
    sales = sum(record.amount for record in records)
    rides = sum(ride_count(record) for record in records)
    if mode == RecordMode.SIMPLE_SUMMARY:
        summary = records[0]
        return DailyTotals(
            day_date=day,
            mode=mode,
            sales=sales,
            rides=rides,
            dispatch_rides=0,
            start_time=summary.start_time,
            end_time=summary.end_time,
            work_minutes=summary.work_minutes,
        )

    ordered = sorted(records, key=lambda item: item.timestamp)
    return DailyTotals(
        day_date=day,
        mode=mode,
        sales=sales,
        rides=rides,
        dispatch_rides=sum(1 for record in records if is_dispatch(record.ride_type)),
        start_time=format_business_time(ordered[0].timestamp, start_hour, tz),
        end_time=format_business_time(ordered[-1].timestamp, start_hour, tz),
    )


def _payment_breakdown(records: list[AnySalesRecord]) -> tuple[dict[PaymentMethod, int], list[PaymentShare]]:
    totals: dict[PaymentMethod, int] = defaultdict(int)
    for record in records:
        for method, amount in split_payment(record):
            totals[method] += amount
    grand_total = sum(totals.values())
    shares = [
        PaymentShare(method=method, amount=amount, percent=percent_of(amount, grand_total))
        for method, amount in sorted(totals.items(), key=lambda item: item[1], reverse=True)
    ]
    return dict(totals), shares


def _hour_buckets(detailed: list[AnySalesRecord], tz: tzinfo | None) -> list[int]:
    buckets = [0] * HOUR_BUCKET_COUNT
    for record in detailed:
        buckets[local_datetime(record.timestamp, tz).hour // HOURS_PER_BUCKET] += record.amount
    return buckets


def _weekday_buckets(records: list[AnySalesRecord], tz: tzinfo | None) -> list[int]:
    buckets = [0] * WEEKDAY_COUNT
    for record in records:
        if record.mode == RecordMode.SIMPLE_SUMMARY:
            day = record.business_date
        else:
            day = local_datetime(record.timestamp, tz).date()
        buckets[sunday_first_weekday(day)] += record.amount
    return buckets


def _gender_split(detailed: list[AnySalesRecord]) -> GenderSplit:
    male = sum(record.passengers_male or 0 for record in detailed)
    female = sum(record.passengers_female or 0 for record in detailed)
    total = male + female
    return GenderSplit(
        male=male,
        female=female,
        male_percent=percent_of(male, total),
        female_percent=percent_of(female, total),
    )


def _ride_type_totals(detailed: list[AnySalesRecord]) -> list[RideTypeTotals]:
    sales: dict[RideType, int] = defaultdict(int)
    counts: dict[RideType, int] = defaultdict(int)
    for record in detailed:
        sales[record.ride_type] += gross_amount(record)
        counts[record.ride_type] += 1
    return [
        RideTypeTotals(ride_type=ride_type, sales=sales[ride_type], count=counts[ride_type])
        for ride_type in RideType
        if counts[ride_type]
    ]


def aggregate_period(
    history: Iterable[AnySalesRecord],
    *,
    period: BillingPeriod,
    start_hour: int,
    tz: tzinfo | None = None,
    live_records: Iterable[AnySalesRecord] = (),
    breakdowns: Iterable[Breakdown] = ALL_BREAKDOWNS,
    monthly_goal: int | None = None,
) -> PeriodStats:
    """Recompute period statistics from a snapshot of records.

    ``live_records`` are the open shift's records; a record present both
    there and in ``history`` is counted once, using the live copy. Each
    business date contributes either its daily summary or its per-ride
    entries, never both.
    """
    requested = frozenset(breakdowns)
    merged = dedupe_by_id(history, live_records)
    in_period = [record for record in merged if period.contains(record_business_date(record, start_hour, tz))]
    grouped = group_by_business_date(in_period, start_hour, tz)

    days: list[tuple[date, RecordMode, list[AnySalesRecord]]] = []
    for day in sorted(grouped):
        mode, day_records = reconcile_day(grouped[day])
        if mode is not None:
            days.append((day, mode, day_records))

    counting = [record for _, _, day_records in days for record in day_records]
    detailed = [record for record in counting if record.mode == RecordMode.DETAILED]

    total_sales = sum(record.amount for record in counting)
    total_rides = sum(ride_count(record) for record in counting)
    bad_customers = sum(1 for record in detailed if record.is_bad_customer)

    stats = PeriodStats(
        period_start=period.start,
        period_end=period.end,
        total_sales=total_sales,
        total_rides=total_rides,
        work_days=len(days),
        average_fare=safe_average(total_sales, total_rides),
        dispatch_rides=sum(1 for record in detailed if is_dispatch(record.ride_type)),
        bad_customers=bad_customers,
        bad_customer_rate=percent_of(bad_customers, len(detailed)),
        net_sales=net_of_tax(total_sales),
        tax_amount=tax_amount(total_sales),
        goal_progress_percent=percent_of(total_sales, monthly_goal) if monthly_goal else None,
    )

    if Breakdown.DAILY in requested:
        stats.daily = [_daily_totals(day, mode, day_records, start_hour, tz) for day, mode, day_records in days]
    if Breakdown.PAYMENT_METHOD in requested:
        stats.per_payment_method, stats.payment_shares = _payment_breakdown(counting)
    if Breakdown.HOUR_BUCKET in requested:
        stats.per_hour_bucket = _hour_buckets(detailed, tz)
    if Breakdown.WEEKDAY in requested:
        stats.per_weekday = _weekday_buckets(counting, tz)
    if Breakdown.GENDER in requested:
        stats.gender_split = _gender_split(detailed)
    if Breakdown.RIDE_TYPE in requested:
        stats.per_ride_type = _ride_type_totals(detailed)
    return stats


def period_stats_for(
    store: RecordStore,
    *,
    reference: date | datetime,
    config: BillingPeriodConfig,
    tz: tzinfo | None = None,
    live_records: Iterable[AnySalesRecord] = (),
    breakdowns: Iterable[Breakdown] = ALL_BREAKDOWNS,
    monthly_goal: int | None = None,
) -> PeriodStats:
    start_hour = config.business_start_hour
    period = billing_period(reference, config.shimebi_day, start_hour, tz)
    history = DailyRecordReconciler(store, start_hour, tz).records_between_dates(period.start, period.end)
    return aggregate_period(
        history,
        period=period,
        start_hour=start_hour,
        tz=tz,
        live_records=live_records,
        breakdowns=breakdowns,
        monthly_goal=monthly_goal,
    )

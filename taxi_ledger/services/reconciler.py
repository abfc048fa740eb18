from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, tzinfo
from typing import Iterable

from taxi_ledger.errors import ReconciliationConflict
from taxi_ledger.logging_utils import get_logger
from taxi_ledger.models import RecordMode
from taxi_ledger.schemas import AnySalesRecord, DetailedRecord, SimpleSummaryRecord
from taxi_ledger.services.business_calendar import business_day_bounds_ms, record_business_date
from taxi_ledger.services.record_store import RecordStore

logger = get_logger("reconciler")


@dataclass(frozen=True)
class WriteOutcome:
    record: AnySalesRecord
    business_date: date
    deleted_ids: tuple[str, ...] = ()


def dedupe_by_id(*sources: Iterable[AnySalesRecord]) -> list[AnySalesRecord]:
    """Merge record sources by id; later sources win, first-seen order is kept."""
    merged: dict[str, AnySalesRecord] = {}
    for source in sources:
        for record in source:
            merged[record.id] = record
    return list(merged.values())


def group_by_business_date(
    records: Iterable[AnySalesRecord],
    start_hour: int,
    tz: tzinfo | None = None,
) -> dict[date, list[AnySalesRecord]]:
    grouped: dict[date, list[AnySalesRecord]] = defaultdict(list)
    for record in records:
        grouped[record_business_date(record, start_hour, tz)].append(record)
    return dict(grouped)


def reconcile_day(day_records: list[AnySalesRecord]) -> tuple[RecordMode | None, list[AnySalesRecord]]:
    """Pick the counting records of one business date.

    A daily summary wins over any per-ride entries. If legacy data holds more
    than one summary the last one in input order counts.
    """
    if not day_records:
        return None, []
    summaries = [record for record in day_records if record.mode == RecordMode.SIMPLE_SUMMARY]
    if summaries:
        return RecordMode.SIMPLE_SUMMARY, [summaries[-1]]
    return RecordMode.DETAILED, list(day_records)


def select_counting_records(
    records: Iterable[AnySalesRecord],
    start_hour: int,
    tz: tzinfo | None = None,
) -> list[AnySalesRecord]:
    grouped = group_by_business_date(dedupe_by_id(records), start_hour, tz)
    counting: list[AnySalesRecord] = []
    for day in sorted(grouped):
        _, day_counting = reconcile_day(grouped[day])
        counting.extend(day_counting)
    return counting


def check_simple_summary_write(
    summary: SimpleSummaryRecord,
    existing: Iterable[AnySalesRecord],
    *,
    confirmed: bool,
) -> list[str]:
    """Ids to delete before ``summary`` is written onto its business date.

    Earlier summaries of the date are always replaced. Detailed records are
    only removed once the caller confirms; until then a
    ``ReconciliationConflict`` reports both totals.
    """
    day_records = list(existing)
    detailed = [record for record in day_records if record.mode == RecordMode.DETAILED]
    if detailed and not confirmed:
        raise ReconciliationConflict(
            business_date=summary.business_date,
            existing_mode=RecordMode.DETAILED.value,
            existing_total=sum(record.amount for record in detailed),
            incoming_total=summary.amount,
            conflicting_ids=[record.id for record in detailed],
        )
    superseded = [
        record.id
        for record in day_records
        if record.mode == RecordMode.SIMPLE_SUMMARY and record.id != summary.id
    ]
    return [record.id for record in detailed] + superseded


def check_detailed_write(
    record: DetailedRecord,
    business_date: date,
    existing: Iterable[AnySalesRecord],
    *,
    confirmed: bool,
) -> list[str]:
    day_records = list(existing)
    summaries = [item for item in day_records if item.mode == RecordMode.SIMPLE_SUMMARY]
    if summaries and not confirmed:
        detailed_total = sum(
            item.amount for item in day_records if item.mode == RecordMode.DETAILED and item.id != record.id
        )
        raise ReconciliationConflict(
            business_date=business_date,
            existing_mode=RecordMode.SIMPLE_SUMMARY.value,
            existing_total=summaries[-1].amount,
            incoming_total=detailed_total + record.amount,
            conflicting_ids=[item.id for item in summaries],
        )
    return [item.id for item in summaries]


class DailyRecordReconciler:
    """Writes records so that every business date keeps one canonical mode."""

    def __init__(self, store: RecordStore, start_hour: int, tz: tzinfo | None = None) -> None:
        self._store = store
        self._start_hour = start_hour
        self._tz = tz

    @property
    def store(self) -> RecordStore:
        return self._store

    def business_date_of(self, record: AnySalesRecord) -> date:
        return record_business_date(record, self._start_hour, self._tz)

    def records_between_dates(self, start: date, end: date) -> list[AnySalesRecord]:
        # Rides are located by timestamp, daily summaries by their pinned date.
        window_start, _ = business_day_bounds_ms(start, self._start_hour, self._tz)
        _, window_end = business_day_bounds_ms(end, self._start_hour, self._tz)
        detailed = [
            record
            for record in self._store.records_between(window_start, window_end)
            if record.mode == RecordMode.DETAILED and start <= self.business_date_of(record) <= end
        ]
        return detailed + list(self._store.summaries_between(start, end))

    def records_for_day(self, day: date) -> list[AnySalesRecord]:
        return self.records_between_dates(day, day)

    def counting_records_for_day(self, day: date) -> list[AnySalesRecord]:
        return select_counting_records(self.records_for_day(day), self._start_hour, self._tz)

    def counting_records_between(self, start: date, end: date) -> list[AnySalesRecord]:
        return select_counting_records(self.records_between_dates(start, end), self._start_hour, self._tz)

    def write_simple_summary(
        self,
        summary: SimpleSummaryRecord,
        *,
        confirmed: bool = False,
        live_records: Iterable[AnySalesRecord] = (),
    ) -> WriteOutcome:
        day = summary.business_date
        live_for_day = [record for record in live_records if self.business_date_of(record) == day]
        existing = dedupe_by_id(self.records_for_day(day), live_for_day)
        try:
            to_delete = check_simple_summary_write(summary, existing, confirmed=confirmed)
        except ReconciliationConflict as conflict:
            self._log_conflict(conflict)
            raise
        return self._apply(summary, day, to_delete)

    def write_detailed(self, record: DetailedRecord, *, confirmed: bool = False) -> WriteOutcome:
        day = self.business_date_of(record)
        try:
            to_delete = check_detailed_write(record, day, self.records_for_day(day), confirmed=confirmed)
        except ReconciliationConflict as conflict:
            self._log_conflict(conflict)
            raise
        return self._apply(record, day, to_delete)

    def delete_record(self, record_id: str) -> None:
        self._store.delete_records([record_id])

    def _apply(self, record: AnySalesRecord, day: date, to_delete: list[str]) -> WriteOutcome:
        if to_delete:
            self._store.delete_records(to_delete)
            logger.info(
                "reconciliation_superseded_deleted",
                extra={
                    "business_date": day,
                    "incoming_mode": record.mode,
                    "deleted_ids": to_delete,
                },
            )
        self._store.put_records([record])
        return WriteOutcome(record=record, business_date=day, deleted_ids=tuple(to_delete))

    @staticmethod
    def _log_conflict(conflict: ReconciliationConflict) -> None:
        logger.info(
            "reconciliation_conflict",
            extra={
                "business_date": conflict.business_date,
                "existing_mode": conflict.existing_mode,
                "existing_total": conflict.existing_total,
                "incoming_total": conflict.incoming_total,
            },
        )

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import date, tzinfo
from typing import Callable, TypeVar
from uuid import uuid4

from taxi_ledger.errors import InvalidSessionTransition, LedgerError, PersistenceError
from taxi_ledger.logging_utils import get_logger
from taxi_ledger.models import RecordMode, SessionState
from taxi_ledger.schemas import DayMetadata, DetailedRecord, ShiftSnapshot, SimpleSummaryRecord
from taxi_ledger.services.business_calendar import resolve_business_date
from taxi_ledger.services.reconciler import (
    DailyRecordReconciler,
    WriteOutcome,
    check_detailed_write,
    dedupe_by_id,
)
from taxi_ledger.services.record_store import DayMetadataStore, RecordStore, ShiftSessionStore
from taxi_ledger.services.revenue_calc import is_dispatch, percent_of

logger = get_logger("shift_session")

MS_PER_MINUTE = 60_000
MS_PER_HOUR = 3_600_000
_ACTIVE_STATES = (SessionState.OPEN, SessionState.ON_BREAK)

T = TypeVar("T")


@dataclass(frozen=True)
class ShiftSummary:
    shift_id: str
    business_date: date
    sales: int
    ride_count: int
    total_rest_minutes: int
    start_odo: int | None
    end_odo: int | None


@dataclass(frozen=True)
class LiveStatus:
    state: SessionState
    sales: int
    ride_count: int
    dispatch_count: int
    started_at: int | None
    planned_end_at: int | None
    break_started_at: int | None
    total_rest_minutes: int
    daily_goal: int
    goal_progress_percent: int


class ShiftSession:
    """One driver's live shift: CLOSED -> OPEN <-> ON_BREAK -> CLOSED.

    Records of the shift's business date stay in memory until ``finalize``;
    records that belong to another business date go straight to history.
    Every mutation is applied locally first and then handed to the optional
    ``session_store``; a failed save raises ``PersistenceError`` but keeps the
    local change.
    """

    def __init__(
        self,
        store: RecordStore,
        metadata_store: DayMetadataStore,
        start_hour: int,
        *,
        session_store: ShiftSessionStore | None = None,
        tz: tzinfo | None = None,
    ) -> None:
        self._store = store
        self._metadata_store = metadata_store
        self._session_store = session_store
        self._start_hour = start_hour
        self._tz = tz
        self._reconciler = DailyRecordReconciler(store, start_hour, tz)
        self._lock = threading.RLock()
        self._reset()

    @classmethod
    def restore(
        cls,
        snapshot: ShiftSnapshot | None,
        store: RecordStore,
        metadata_store: DayMetadataStore,
        start_hour: int,
        *,
        session_store: ShiftSessionStore | None = None,
        tz: tzinfo | None = None,
    ) -> ShiftSession:
        session = cls(store, metadata_store, start_hour, session_store=session_store, tz=tz)
        if snapshot is None or snapshot.state == SessionState.CLOSED:
            return session
        session._id = snapshot.id
        session._state = snapshot.state
        session._start_time = snapshot.start_time
        session._planned_hours = snapshot.planned_hours
        session._daily_goal = snapshot.daily_goal
        session._total_rest_minutes = snapshot.total_rest_minutes
        session._start_odo = snapshot.start_odo
        session._break_started_at = snapshot.break_started_at if snapshot.state == SessionState.ON_BREAK else None
        session._records = list(snapshot.records)
        return session

    def _reset(self) -> None:
        self._state = SessionState.CLOSED
        self._id: str | None = None
        self._start_time: int | None = None
        self._planned_hours: float = 0
        self._daily_goal = 0
        self._total_rest_minutes = 0
        self._start_odo: int | None = None
        self._break_started_at: int | None = None
        self._records: list[DetailedRecord] = []

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def records(self) -> tuple[DetailedRecord, ...]:
        with self._lock:
            return tuple(self._records)

    @property
    def total_rest_minutes(self) -> int:
        with self._lock:
            return self._total_rest_minutes

    @property
    def business_date(self) -> date | None:
        with self._lock:
            if self._start_time is None:
                return None
            return resolve_business_date(self._start_time, self._start_hour, self._tz)

    def snapshot(self) -> ShiftSnapshot | None:
        with self._lock:
            return self._snapshot()

    def _snapshot(self) -> ShiftSnapshot | None:
        if self._state == SessionState.CLOSED or self._id is None or self._start_time is None:
            return None
        return ShiftSnapshot(
            id=self._id,
            state=self._state,
            start_time=self._start_time,
            planned_hours=self._planned_hours,
            daily_goal=self._daily_goal,
            total_rest_minutes=self._total_rest_minutes,
            start_odo=self._start_odo,
            break_started_at=self._break_started_at,
            records=list(self._records),
        )

    def _require(self, operation: str, *allowed: SessionState) -> None:
        if self._state not in allowed:
            raise InvalidSessionTransition(
                state=self._state.value,
                operation=operation,
                reason=f"{operation} is not allowed while the shift is {self._state.value}.",
            )

    def _session_day(self, operation: str) -> date:
        if self._id is None or self._start_time is None:
            raise InvalidSessionTransition(
                state=self._state.value,
                operation=operation,
                reason=f"{operation} needs a started shift; the shift has no start time.",
            )
        return resolve_business_date(self._start_time, self._start_hour, self._tz)

    def _call_store(self, operation: str, action: Callable[[], T]) -> T:
        try:
            return action()
        except LedgerError:
            raise
        except Exception as exc:
            logger.warning(
                "shift_persist_failed",
                extra={"shift_id": self._id, "operation": operation, "target": "history"},
                exc_info=True,
            )
            raise PersistenceError(f"History could not be updated during {operation}.") from exc

    def _persist(self, operation: str) -> ShiftSnapshot | None:
        snapshot = self._snapshot()
        if self._session_store is None:
            return snapshot
        try:
            self._session_store.save_session(snapshot)
        except Exception as exc:
            logger.warning(
                "shift_persist_failed",
                extra={"shift_id": self._id, "operation": operation, "target": "session"},
                exc_info=True,
            )
            raise PersistenceError(f"Shift state could not be saved after {operation}.") from exc
        return snapshot

    def _sort_records(self) -> None:
        self._records.sort(key=lambda item: item.timestamp)

    def start(
        self,
        daily_goal: int,
        planned_hours: float,
        start_odo: int | None = None,
        *,
        now: int,
    ) -> ShiftSnapshot | None:
        with self._lock:
            self._require("start", SessionState.CLOSED)
            today = resolve_business_date(now, self._start_hour, self._tz)
            # Records left behind by a shift that was never finalized.
            seeded = sorted(
                (
                    record
                    for record in self._call_store("start", lambda: self._reconciler.records_for_day(today))
                    if record.mode == RecordMode.DETAILED
                ),
                key=lambda item: item.timestamp,
            )
            metadata = self._call_store("start", lambda: self._metadata_store.get_day_metadata(today))

            self._id = uuid4().hex[:12]
            self._state = SessionState.OPEN
            self._start_time = seeded[0].timestamp if seeded else now
            self._planned_hours = planned_hours
            self._daily_goal = daily_goal
            self._total_rest_minutes = metadata.total_rest_minutes if metadata else 0
            self._start_odo = start_odo
            self._break_started_at = None
            self._records = list(seeded)

            logger.info(
                "shift_started",
                extra={
                    "shift_id": self._id,
                    "business_date": today,
                    "seeded_records": len(seeded),
                    "carried_rest_minutes": self._total_rest_minutes,
                },
            )
            return self._persist("start")

    def _place_in_session(self, operation: str, record: DetailedRecord, *, confirmed: bool) -> None:
        day = self._session_day(operation)
        stored = self._call_store(operation, lambda: self._reconciler.records_for_day(day))
        to_delete = check_detailed_write(record, day, dedupe_by_id(stored, self._records), confirmed=confirmed)
        if to_delete:
            self._call_store(operation, lambda: self._store.delete_records(to_delete))
        # A stored copy with the same id is left in place; finalize replaces it.
        self._records = [item for item in self._records if item.id != record.id]
        self._records.append(record)
        self._sort_records()

    def add_record(self, record: DetailedRecord, *, confirmed: bool = False) -> ShiftSnapshot | None:
        with self._lock:
            self._require("add_record", *_ACTIVE_STATES)
            if not isinstance(record, DetailedRecord):
                raise TypeError("A shift only collects detailed records; use write_simple_summary for daily totals.")
            if resolve_business_date(record.timestamp, self._start_hour, self._tz) == self.business_date:
                self._place_in_session("add_record", record, confirmed=confirmed)
            else:
                self._call_store("add_record", lambda: self._reconciler.write_detailed(record, confirmed=confirmed))
            return self._persist("add_record")

    def edit_record(self, record: DetailedRecord, *, confirmed: bool = False) -> ShiftSnapshot | None:
        with self._lock:
            self._require("edit_record", *_ACTIVE_STATES)
            if not isinstance(record, DetailedRecord):
                raise TypeError("A shift only collects detailed records; use write_simple_summary for daily totals.")
            in_session = any(item.id == record.id for item in self._records)
            if resolve_business_date(record.timestamp, self._start_hour, self._tz) == self.business_date:
                self._place_in_session("edit_record", record, confirmed=confirmed)
            else:
                # Moved to another business date: it leaves the shift for history.
                self._call_store("edit_record", lambda: self._reconciler.write_detailed(record, confirmed=confirmed))
                if in_session:
                    self._records = [item for item in self._records if item.id != record.id]
            return self._persist("edit_record")

    def delete_record(self, record_id: str) -> ShiftSnapshot | None:
        with self._lock:
            self._require("delete_record", *_ACTIVE_STATES)
            self._records = [item for item in self._records if item.id != record_id]
            self._call_store("delete_record", lambda: self._reconciler.delete_record(record_id))
            return self._persist("delete_record")

    def write_simple_summary(self, summary: SimpleSummaryRecord, *, confirmed: bool = False) -> WriteOutcome:
        """Write a daily summary, treating this shift's records as part of history."""
        with self._lock:
            live = list(self._records)
            outcome = self._call_store(
                "write_simple_summary",
                lambda: self._reconciler.write_simple_summary(summary, confirmed=confirmed, live_records=live),
            )
            if outcome.deleted_ids and self._records:
                deleted = set(outcome.deleted_ids)
                self._records = [item for item in self._records if item.id not in deleted]
                self._persist("write_simple_summary")
            return outcome

    def toggle_break(self, *, now: int) -> ShiftSnapshot | None:
        with self._lock:
            self._require("toggle_break", *_ACTIVE_STATES)
            if self._state == SessionState.OPEN:
                self._state = SessionState.ON_BREAK
                self._break_started_at = now
            else:
                started = self._break_started_at if self._break_started_at is not None else now
                self._total_rest_minutes += max(0, now - started) // MS_PER_MINUTE
                self._break_started_at = None
                self._state = SessionState.OPEN
            return self._persist("toggle_break")

    def finalize(self, end_odo: int | None = None) -> ShiftSummary:
        with self._lock:
            self._require("finalize", *_ACTIVE_STATES)
            day = self._session_day("finalize")
            records = list(self._records)

            def commit() -> None:
                self._store.put_records(records)
                existing = self._metadata_store.get_day_metadata(day) or DayMetadata(day_date=day)
                update: dict[str, int | None] = {"total_rest_minutes": self._total_rest_minutes}
                if self._start_odo is not None:
                    update["start_odo"] = self._start_odo
                if end_odo is not None:
                    update["end_odo"] = end_odo
                self._metadata_store.put_day_metadata(existing.model_copy(update=update))

            # History is committed before local state is cleared so a failed
            # finalize can simply be retried.
            self._call_store("finalize", commit)

            summary = ShiftSummary(
                shift_id=self._id,
                business_date=day,
                sales=sum(record.amount for record in records),
                ride_count=len(records),
                total_rest_minutes=self._total_rest_minutes,
                start_odo=self._start_odo,
                end_odo=end_odo,
            )
            self._reset()
            logger.info(
                "shift_finalized",
                extra={
                    "shift_id": summary.shift_id,
                    "business_date": day,
                    "sales": summary.sales,
                    "ride_count": summary.ride_count,
                    "total_rest_minutes": summary.total_rest_minutes,
                },
            )
            self._persist("finalize")
            return summary

    def live_status(self, *, now: int) -> LiveStatus:
        with self._lock:
            if self._state == SessionState.CLOSED or self._start_time is None:
                return LiveStatus(
                    state=SessionState.CLOSED,
                    sales=0,
                    ride_count=0,
                    dispatch_count=0,
                    started_at=None,
                    planned_end_at=None,
                    break_started_at=None,
                    total_rest_minutes=0,
                    daily_goal=0,
                    goal_progress_percent=0,
                )
            sales = sum(record.amount for record in self._records)
            rest = self._total_rest_minutes
            if self._break_started_at is not None:
                rest += max(0, now - self._break_started_at) // MS_PER_MINUTE
            return LiveStatus(
                state=self._state,
                sales=sales,
                ride_count=len(self._records),
                dispatch_count=sum(1 for record in self._records if is_dispatch(record.ride_type)),
                started_at=self._start_time,
                planned_end_at=self._start_time + int(self._planned_hours * MS_PER_HOUR),
                break_started_at=self._break_started_at,
                total_rest_minutes=rest,
                daily_goal=self._daily_goal,
                goal_progress_percent=percent_of(sales, self._daily_goal),
            )

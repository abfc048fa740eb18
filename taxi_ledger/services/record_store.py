from __future__ import annotations

from datetime import date
from typing import Iterable, Protocol

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from taxi_ledger.models import DayMetadataRow, RecordMode, SalesRecordRow, ShiftSessionRow
from taxi_ledger.schemas import AnySalesRecord, DayMetadata, ShiftSnapshot, dump_record, parse_record


class RecordStore(Protocol):
    def records_between(self, start_ms: int, end_ms: int) -> list[AnySalesRecord]:
        """Records with ``start_ms <= timestamp < end_ms`` ordered by timestamp."""
        ...

    def put_records(self, records: Iterable[AnySalesRecord]) -> None:
        """Insert or replace by id."""
        ...

    def summaries_between(self, start: date, end: date) -> list[AnySalesRecord]:
        """Daily summaries pinned to a business date in ``start..end`` (inclusive)."""
        ...

    def delete_records(self, record_ids: Iterable[str]) -> None:
        ...


class DayMetadataStore(Protocol):
    def get_day_metadata(self, day: date) -> DayMetadata | None:
        ...

    def put_day_metadata(self, metadata: DayMetadata) -> None:
        ...


class ShiftSessionStore(Protocol):
    def save_session(self, snapshot: ShiftSnapshot | None) -> None:
        """Persist the open shift; ``None`` clears it."""
        ...

    def load_session(self) -> ShiftSnapshot | None:
        ...


class SqlRecordStore:
    def __init__(self, session_factory: sessionmaker[Session], *, user_id: str) -> None:
        self._session_factory = session_factory
        self._user_id = user_id

    def records_between(self, start_ms: int, end_ms: int) -> list[AnySalesRecord]:
        with self._session_factory() as db:
            rows = db.scalars(
                select(SalesRecordRow)
                .where(
                    SalesRecordRow.user_id == self._user_id,
                    SalesRecordRow.timestamp_ms >= start_ms,
                    SalesRecordRow.timestamp_ms < end_ms,
                )
                .order_by(SalesRecordRow.timestamp_ms.asc(), SalesRecordRow.record_id.asc())
            ).all()
            return [parse_record(row.payload) for row in rows]

    def summaries_between(self, start: date, end: date) -> list[AnySalesRecord]:
        with self._session_factory() as db:
            rows = db.scalars(
                select(SalesRecordRow)
                .where(
                    SalesRecordRow.user_id == self._user_id,
                    SalesRecordRow.mode == RecordMode.SIMPLE_SUMMARY,
                    SalesRecordRow.business_date >= start,
                    SalesRecordRow.business_date <= end,
                )
                .order_by(SalesRecordRow.business_date.asc(), SalesRecordRow.timestamp_ms.asc())
            ).all()
            return [parse_record(row.payload) for row in rows]

    def put_records(self, records: Iterable[AnySalesRecord]) -> None:
        with self._session_factory() as db:
            for record in records:
                row = db.get(SalesRecordRow, (self._user_id, record.id))
                if row is None:
                    row = SalesRecordRow(user_id=self._user_id, record_id=record.id)
                    db.add(row)
                row.mode = RecordMode(record.mode)
                row.timestamp_ms = record.timestamp
                row.business_date = record.business_date if record.mode == RecordMode.SIMPLE_SUMMARY else None
                row.amount = record.amount
                row.payload = dump_record(record)
            db.commit()

    def delete_records(self, record_ids: Iterable[str]) -> None:
        ids = list(dict.fromkeys(record_ids))
        if not ids:
            return
        with self._session_factory() as db:
            db.execute(
                delete(SalesRecordRow).where(
                    SalesRecordRow.user_id == self._user_id,
                    SalesRecordRow.record_id.in_(ids),
                )
            )
            db.commit()


class SqlDayMetadataStore:
    def __init__(self, session_factory: sessionmaker[Session], *, user_id: str) -> None:
        self._session_factory = session_factory
        self._user_id = user_id

    def get_day_metadata(self, day: date) -> DayMetadata | None:
        with self._session_factory() as db:
            row = db.get(DayMetadataRow, (self._user_id, day))
            if row is None:
                return None
            return DayMetadata.model_validate(row)

    def put_day_metadata(self, metadata: DayMetadata) -> None:
        with self._session_factory() as db:
            row = db.get(DayMetadataRow, (self._user_id, metadata.day_date))
            if row is None:
                row = DayMetadataRow(user_id=self._user_id, day_date=metadata.day_date)
                db.add(row)
            row.memo = metadata.memo
            row.attributed_month = metadata.attributed_month
            row.total_rest_minutes = metadata.total_rest_minutes
            row.start_odo = metadata.start_odo
            row.end_odo = metadata.end_odo
            db.commit()


class SqlShiftSessionStore:
    def __init__(self, session_factory: sessionmaker[Session], *, user_id: str) -> None:
        self._session_factory = session_factory
        self._user_id = user_id

    def save_session(self, snapshot: ShiftSnapshot | None) -> None:
        with self._session_factory() as db:
            row = db.get(ShiftSessionRow, self._user_id)
            if snapshot is None:
                if row is not None:
                    db.delete(row)
                    db.commit()
                return
            if row is None:
                row = ShiftSessionRow(user_id=self._user_id)
                db.add(row)
            row.payload = snapshot.model_dump(mode="json", by_alias=True)
            db.commit()

    def load_session(self) -> ShiftSnapshot | None:
        with self._session_factory() as db:
            row = db.get(ShiftSessionRow, self._user_id)
            if row is None:
                return None
            return ShiftSnapshot.model_validate(row.payload)

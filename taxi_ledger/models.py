from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import JSON, BigInteger, Date, DateTime, Enum, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from taxi_ledger.db import Base


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    CARD = "CARD"
    NET = "NET"
    E_MONEY = "E_MONEY"
    TRANSPORT = "TRANSPORT"
    DIDI = "DIDI"
    QR = "QR"
    TICKET = "TICKET"


class RideType(str, enum.Enum):
    FLOW = "FLOW"
    WAIT = "WAIT"
    APP = "APP"
    HIRE = "HIRE"
    RESERVE = "RESERVE"
    WIRELESS = "WIRELESS"


class RecordMode(str, enum.Enum):
    DETAILED = "DETAILED"
    SIMPLE_SUMMARY = "SIMPLE_SUMMARY"


class SessionState(str, enum.Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    ON_BREAK = "ON_BREAK"


class SalesRecordRow(Base):
    __tablename__ = "sales_records"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    record_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    mode: Mapped[RecordMode] = mapped_column(Enum(RecordMode, name="record_mode"), nullable=False)
    timestamp_ms: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    # Only simple summaries pin their business date; detailed rows leave it NULL.
    business_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class DayMetadataRow(Base):
    __tablename__ = "day_metadata"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    day_date: Mapped[date] = mapped_column(Date, primary_key=True)
    memo: Mapped[str] = mapped_column(Text, nullable=False, default="")
    attributed_month: Mapped[str | None] = mapped_column(String(7), nullable=True)
    total_rest_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start_odo: Mapped[int | None] = mapped_column(Integer, nullable=True)
    end_odo: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class ShiftSessionRow(Base):
    __tablename__ = "shift_sessions"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

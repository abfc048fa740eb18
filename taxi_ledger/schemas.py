from __future__ import annotations

import math
from datetime import date
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic.alias_generators import to_camel

from taxi_ledger.models import PaymentMethod, RecordMode, RideType, SessionState
from taxi_ledger.settings import get_settings

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"
YEAR_MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _RecordBase(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(min_length=1, max_length=128)
    amount: int = Field(ge=0)
    timestamp: int


class DetailedRecord(_RecordBase):
    mode: Literal["DETAILED"] = "DETAILED"
    toll: int = Field(default=0, ge=0)
    return_toll: int = Field(default=0, ge=0)
    payment_method: PaymentMethod = PaymentMethod.CASH
    non_cash_amount: int = Field(default=0, ge=0)
    ride_type: RideType = RideType.FLOW
    pickup_location: str | None = None
    dropoff_location: str | None = None
    pickup_coords: str | None = None
    dropoff_coords: str | None = None
    passengers_male: int | None = Field(default=None, ge=0)
    passengers_female: int | None = Field(default=None, ge=0)
    remarks: str | None = None
    is_bad_customer: bool = False

    @model_validator(mode="after")
    def validate_non_cash_amount(self) -> DetailedRecord:
        if self.non_cash_amount > self.amount + self.toll:
            raise ValueError("nonCashAmount cannot exceed amount + toll")
        return self


class SimpleSummaryRecord(_RecordBase):
    """One driver-entered total for a whole business day."""

    mode: Literal["SIMPLE_SUMMARY"] = "SIMPLE_SUMMARY"
    business_date: date
    ride_count: int = Field(default=0, ge=0)
    work_minutes: int = Field(default=0, ge=0)
    start_time: str | None = Field(default=None, pattern=HHMM_PATTERN)
    end_time: str | None = Field(default=None, pattern=HHMM_PATTERN)
    note: str | None = None


SalesRecord = Annotated[Union[DetailedRecord, SimpleSummaryRecord], Field(discriminator="mode")]
AnySalesRecord = Union[DetailedRecord, SimpleSummaryRecord]

_SALES_RECORD_ADAPTER: TypeAdapter[AnySalesRecord] = TypeAdapter(SalesRecord)


def parse_record(raw: dict[str, Any]) -> AnySalesRecord:
    # Rows written before modes existed are per-ride entries.
    if "mode" not in raw:
        raw = {**raw, "mode": RecordMode.DETAILED.value}
    return _SALES_RECORD_ADAPTER.validate_python(raw)


def dump_record(record: AnySalesRecord) -> dict[str, Any]:
    return record.model_dump(mode="json", by_alias=True, exclude_none=True)


class DayMetadata(BaseModel):
    day_date: date
    memo: str = ""
    attributed_month: str | None = Field(default=None, pattern=YEAR_MONTH_PATTERN)
    total_rest_minutes: int = Field(default=0, ge=0)
    start_odo: int | None = Field(default=None, ge=0)
    end_odo: int | None = Field(default=None, ge=0)

    model_config = ConfigDict(from_attributes=True)


class BillingPeriodConfig(BaseModel):
    shimebi_day: int = Field(default=20, ge=0, le=28)
    business_start_hour: int = Field(default=9, ge=0, le=23)

    model_config = ConfigDict(frozen=True)


def _finite_or(value: Any, default: float) -> Any:
    if value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return value


class ShiftSnapshot(_CamelModel):
    id: str
    state: SessionState = SessionState.OPEN
    start_time: int
    planned_hours: float = Field(default=12, ge=0)
    daily_goal: int = Field(default=50000, ge=0)
    total_rest_minutes: int = Field(default=0, ge=0)
    start_odo: int | None = Field(default=None, ge=0)
    break_started_at: int | None = None
    records: list[DetailedRecord] = Field(default_factory=list)

    @field_validator("daily_goal", mode="before")
    @classmethod
    def sanitize_daily_goal(cls, value: Any) -> Any:
        return _finite_or(value, get_settings().default_daily_goal)

    @field_validator("planned_hours", mode="before")
    @classmethod
    def sanitize_planned_hours(cls, value: Any) -> Any:
        return _finite_or(value, get_settings().default_planned_hours)

    @field_validator("total_rest_minutes", mode="before")
    @classmethod
    def sanitize_rest_minutes(cls, value: Any) -> Any:
        return _finite_or(value, 0)

    @field_validator("records", mode="after")
    @classmethod
    def sort_records(cls, value: list[DetailedRecord]) -> list[DetailedRecord]:
        return sorted(value, key=lambda item: item.timestamp)


class DailyTotals(BaseModel):
    day_date: date
    mode: RecordMode
    sales: int
    rides: int
    dispatch_rides: int
    start_time: str | None = None
    end_time: str | None = None
    work_minutes: int | None = None


class PaymentShare(BaseModel):
    method: PaymentMethod
    amount: int
    percent: int


class GenderSplit(BaseModel):
    male: int = 0
    female: int = 0
    male_percent: int = 0
    female_percent: int = 0


class RideTypeTotals(BaseModel):
    ride_type: RideType
    sales: int
    count: int


class PeriodStats(BaseModel):
    period_start: date
    period_end: date
    total_sales: int
    total_rides: int
    work_days: int
    average_fare: int
    dispatch_rides: int
    bad_customers: int
    bad_customer_rate: int
    net_sales: int
    tax_amount: int
    goal_progress_percent: int | None = None
    daily: list[DailyTotals] | None = None
    per_payment_method: dict[PaymentMethod, int] | None = None
    payment_shares: list[PaymentShare] | None = None
    per_hour_bucket: list[int] | None = None
    per_weekday: list[int] | None = None
    gender_split: GenderSplit | None = None
    per_ride_type: list[RideTypeTotals] | None = None

    def to_public(self) -> dict[str, Any]:
        """Shape consumed by dashboards and rankings."""
        payment = self.per_payment_method or {}
        gender = self.gender_split or GenderSplit()
        return {
            "totalSales": self.total_sales,
            "totalRides": self.total_rides,
            "perPaymentMethod": {method.value: amount for method, amount in payment.items()},
            "perHourBucket": list(self.per_hour_bucket or [0] * 8),
            "perWeekday": list(self.per_weekday or [0] * 7),
            "genderSplit": {"male": gender.male, "female": gender.female},
        }

from __future__ import annotations

from taxi_ledger.models import PaymentMethod, RecordMode, RideType
from taxi_ledger.schemas import AnySalesRecord

STREET_RIDE_TYPES = frozenset({RideType.FLOW, RideType.WAIT})
# Net = gross / 1.1 rounded to 10 yen, i.e. round(gross / 11) * 10.
_TAX_DIVISOR = 11
_NET_UNIT = 10


def round_half_up_ratio(numerator: int, denominator: int) -> int:
    if denominator <= 0:
        return 0
    return (2 * numerator + denominator) // (2 * denominator)


def percent_of(part: int, whole: int) -> int:
    return round_half_up_ratio(part * 100, whole)


def safe_average(total: int, count: int) -> int:
    return round_half_up_ratio(total, count)


def net_of_tax(total: int) -> int:
    return round_half_up_ratio(total, _TAX_DIVISOR) * _NET_UNIT


def tax_amount(total: int) -> int:
    return total - net_of_tax(total)


def is_dispatch(ride_type: RideType) -> bool:
    return ride_type not in STREET_RIDE_TYPES


def ride_count(record: AnySalesRecord) -> int:
    if record.mode == RecordMode.SIMPLE_SUMMARY:
        return record.ride_count
    return 1


def gross_amount(record: AnySalesRecord) -> int:
    if record.mode == RecordMode.SIMPLE_SUMMARY:
        return record.amount
    return record.amount + record.toll


def split_payment(record: AnySalesRecord) -> list[tuple[PaymentMethod, int]]:
    """Fare + toll attributed per payment method.

    Non-cash methods only cover ``non_cash_amount``; whatever is left was
    paid in cash. Daily summaries carry no payment detail and count as cash.
    """
    gross = gross_amount(record)
    if record.mode == RecordMode.SIMPLE_SUMMARY or record.payment_method == PaymentMethod.CASH:
        return [(PaymentMethod.CASH, gross)] if gross > 0 else []

    parts: list[tuple[PaymentMethod, int]] = []
    if record.non_cash_amount > 0:
        parts.append((record.payment_method, record.non_cash_amount))
    cash_rest = gross - record.non_cash_amount
    if cash_rest > 0:
        parts.append((PaymentMethod.CASH, cash_rest))
    return parts

from __future__ import annotations

import unittest
from datetime import date

from taxi_ledger.models import PaymentMethod, RideType
from taxi_ledger.schemas import DetailedRecord, SimpleSummaryRecord
from taxi_ledger.services.revenue_calc import (
    gross_amount,
    is_dispatch,
    net_of_tax,
    percent_of,
    ride_count,
    round_half_up_ratio,
    safe_average,
    split_payment,
    tax_amount,
)


def _ride(**overrides) -> DetailedRecord:
    values = {"id": "r1", "amount": 3000, "timestamp": 0, "toll": 500}
    values.update(overrides)
    return DetailedRecord(**values)


class RoundingTests(unittest.TestCase):
    def test_half_rounds_up(self) -> None:
        self.assertEqual(round_half_up_ratio(1, 2), 1)
        self.assertEqual(round_half_up_ratio(5, 2), 3)
        self.assertEqual(round_half_up_ratio(4, 3), 1)

    def test_zero_denominator_is_zero(self) -> None:
        self.assertEqual(round_half_up_ratio(10, 0), 0)
        self.assertEqual(percent_of(10, 0), 0)
        self.assertEqual(safe_average(0, 0), 0)

    def test_percent_and_average(self) -> None:
        self.assertEqual(percent_of(1, 3), 33)
        self.assertEqual(percent_of(1, 8), 13)
        self.assertEqual(percent_of(2, 3), 67)
        self.assertEqual(safe_average(10, 4), 3)
        self.assertEqual(safe_average(20000, 5), 4000)


class TaxTests(unittest.TestCase):
    def test_net_rounds_to_ten_yen(self) -> None:
        self.assertEqual(net_of_tax(11000), 10000)
        self.assertEqual(tax_amount(11000), 1000)
        self.assertEqual(net_of_tax(1000), 910)
        self.assertEqual(tax_amount(1000), 90)
        self.assertEqual(net_of_tax(0), 0)


class RecordHelperTests(unittest.TestCase):
    def test_dispatch_classification(self) -> None:
        self.assertFalse(is_dispatch(RideType.FLOW))
        self.assertFalse(is_dispatch(RideType.WAIT))
        for ride_type in (RideType.APP, RideType.HIRE, RideType.RESERVE, RideType.WIRELESS):
            self.assertTrue(is_dispatch(ride_type))

    def test_ride_count_and_gross(self) -> None:
        summary = SimpleSummaryRecord(
            id="s1", amount=20000, timestamp=0, business_date=date(2025, 3, 9), ride_count=5
        )
        self.assertEqual(ride_count(summary), 5)
        self.assertEqual(gross_amount(summary), 20000)
        self.assertEqual(ride_count(_ride()), 1)
        self.assertEqual(gross_amount(_ride()), 3500)


class SplitPaymentTests(unittest.TestCase):
    def test_cash_ride_is_all_cash(self) -> None:
        self.assertEqual(split_payment(_ride()), [(PaymentMethod.CASH, 3500)])

    def test_fully_covered_card_ride(self) -> None:
        record = _ride(payment_method=PaymentMethod.CARD, non_cash_amount=3500)
        self.assertEqual(split_payment(record), [(PaymentMethod.CARD, 3500)])

    def test_partial_card_ride_leaves_cash_remainder(self) -> None:
        record = _ride(payment_method=PaymentMethod.CARD, non_cash_amount=2000)
        self.assertEqual(split_payment(record), [(PaymentMethod.CARD, 2000), (PaymentMethod.CASH, 1500)])

    def test_summary_counts_as_cash(self) -> None:
        summary = SimpleSummaryRecord(id="s1", amount=8000, timestamp=0, business_date=date(2025, 3, 9))
        self.assertEqual(split_payment(summary), [(PaymentMethod.CASH, 8000)])

    def test_zero_amount_has_no_parts(self) -> None:
        self.assertEqual(split_payment(_ride(amount=0, toll=0)), [])


if __name__ == "__main__":
    unittest.main()

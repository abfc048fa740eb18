from __future__ import annotations

import unittest
from datetime import date

from ledger_fakes import TOKYO, MemoryRecordStore, ride, summary, ts
from taxi_ledger.errors import ReconciliationConflict
from taxi_ledger.models import RecordMode
from taxi_ledger.services.reconciler import (
    DailyRecordReconciler,
    dedupe_by_id,
    reconcile_day,
    select_counting_records,
)

DAY = date(2025, 3, 9)


def _detailed_day() -> list:
    return [
        ride("r1", 6000, ts(2025, 3, 9, 10)),
        ride("r2", 6000, ts(2025, 3, 9, 14)),
        ride("r3", 6000, ts(2025, 3, 10, 2)),
    ]


class CountingSelectionTests(unittest.TestCase):
    def test_summary_wins_over_detailed_records(self) -> None:
        records = _detailed_day() + [summary(DAY, 20000, 5)]
        counting = select_counting_records(records, 9, TOKYO)
        self.assertEqual([record.id for record in counting], ["simple_2025-03-09"])
        self.assertEqual(sum(record.amount for record in counting), 20000)

    def test_detailed_only_day_counts_every_ride(self) -> None:
        mode, counting = reconcile_day(_detailed_day())
        self.assertEqual(mode, RecordMode.DETAILED)
        self.assertEqual(len(counting), 3)

    def test_empty_day(self) -> None:
        self.assertEqual(reconcile_day([]), (None, []))

    def test_last_of_several_summaries_counts(self) -> None:
        first = summary(DAY, 10000, 2, record_id="a")
        second = summary(DAY, 12000, 3, record_id="b")
        mode, counting = reconcile_day([first, second])
        self.assertEqual(mode, RecordMode.SIMPLE_SUMMARY)
        self.assertEqual(counting, [second])

    def test_dedupe_prefers_later_source(self) -> None:
        stored = ride("r1", 1000, ts(2025, 3, 9, 10))
        live = ride("r1", 1500, ts(2025, 3, 9, 10))
        merged = dedupe_by_id([stored, ride("r2", 2000, ts(2025, 3, 9, 11))], [live])
        self.assertEqual([record.id for record in merged], ["r1", "r2"])
        self.assertEqual(merged[0].amount, 1500)


class SimpleSummaryWriteTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = MemoryRecordStore(_detailed_day())
        self.reconciler = DailyRecordReconciler(self.store, 9, TOKYO)

    def test_unconfirmed_switch_raises_conflict_without_deleting(self) -> None:
        with self.assertLogs("taxi_ledger.reconciler", level="INFO") as captured:
            with self.assertRaises(ReconciliationConflict) as exc:
                self.reconciler.write_simple_summary(summary(DAY, 20000, 5))

        conflict = exc.exception
        self.assertEqual(conflict.code, "RECONCILIATION_CONFLICT")
        self.assertEqual(conflict.existing_mode, "DETAILED")
        self.assertEqual(conflict.existing_total, 18000)
        self.assertEqual(conflict.incoming_total, 20000)
        self.assertEqual(sorted(conflict.conflicting_ids), ["r1", "r2", "r3"])
        self.assertEqual(conflict.to_payload()["error"]["business_date"], "2025-03-09")
        self.assertEqual(captured.records[0].getMessage(), "reconciliation_conflict")
        self.assertEqual(self.store.operations, [])
        self.assertEqual(len(self.store.rows), 3)

    def test_confirmed_switch_deletes_detailed_before_writing(self) -> None:
        outcome = self.reconciler.write_simple_summary(summary(DAY, 20000, 5), confirmed=True)

        self.assertEqual(self.store.operations, [("delete", ["r1", "r2", "r3"]), ("put", ["simple_2025-03-09"])])
        self.assertEqual(outcome.business_date, DAY)
        self.assertEqual(outcome.deleted_ids, ("r1", "r2", "r3"))
        counting = self.reconciler.counting_records_for_day(DAY)
        self.assertEqual([(record.amount, record.ride_count) for record in counting], [(20000, 5)])

    def test_new_summary_replaces_previous_one(self) -> None:
        store = MemoryRecordStore([summary(DAY, 15000, 4, record_id="old")])
        reconciler = DailyRecordReconciler(store, 9, TOKYO)

        outcome = reconciler.write_simple_summary(summary(DAY, 20000, 5, record_id="new"))

        self.assertEqual(outcome.deleted_ids, ("old",))
        self.assertEqual(list(store.rows), ["new"])

    def test_resubmitting_same_summary_is_a_replace(self) -> None:
        store = MemoryRecordStore([summary(DAY, 15000, 4)])
        reconciler = DailyRecordReconciler(store, 9, TOKYO)

        outcome = reconciler.write_simple_summary(summary(DAY, 16000, 4))

        self.assertEqual(outcome.deleted_ids, ())
        self.assertEqual(store.rows["simple_2025-03-09"].amount, 16000)

    def test_live_records_take_part_in_the_check(self) -> None:
        store = MemoryRecordStore()
        reconciler = DailyRecordReconciler(store, 9, TOKYO)
        live = [ride("live1", 4000, ts(2025, 3, 9, 12))]

        with self.assertRaises(ReconciliationConflict) as exc:
            reconciler.write_simple_summary(summary(DAY, 20000, 5), live_records=live)
        self.assertEqual(exc.exception.existing_total, 4000)

        outcome = reconciler.write_simple_summary(summary(DAY, 20000, 5), confirmed=True, live_records=live)
        self.assertEqual(outcome.deleted_ids, ("live1",))

    def test_live_records_of_other_days_are_ignored(self) -> None:
        store = MemoryRecordStore()
        reconciler = DailyRecordReconciler(store, 9, TOKYO)
        live = [ride("live1", 4000, ts(2025, 3, 10, 12))]

        outcome = reconciler.write_simple_summary(summary(DAY, 20000, 5), live_records=live)
        self.assertEqual(outcome.deleted_ids, ())


class DetailedWriteTests(unittest.TestCase):
    def test_detailed_onto_summary_day_conflicts(self) -> None:
        store = MemoryRecordStore([summary(DAY, 20000, 5)])
        reconciler = DailyRecordReconciler(store, 9, TOKYO)

        with self.assertRaises(ReconciliationConflict) as exc:
            reconciler.write_detailed(ride("r9", 3000, ts(2025, 3, 9, 15)))

        self.assertEqual(exc.exception.existing_mode, "SIMPLE_SUMMARY")
        self.assertEqual(exc.exception.existing_total, 20000)
        self.assertEqual(exc.exception.incoming_total, 3000)
        self.assertIn("simple_2025-03-09", store.rows)

    def test_confirmed_detailed_write_drops_summary(self) -> None:
        store = MemoryRecordStore([summary(DAY, 20000, 5)])
        reconciler = DailyRecordReconciler(store, 9, TOKYO)

        outcome = reconciler.write_detailed(ride("r9", 3000, ts(2025, 3, 9, 15)), confirmed=True)

        self.assertEqual(outcome.deleted_ids, ("simple_2025-03-09",))
        self.assertEqual(list(store.rows), ["r9"])

    def test_plain_detailed_write(self) -> None:
        store = MemoryRecordStore(_detailed_day())
        reconciler = DailyRecordReconciler(store, 9, TOKYO)

        outcome = reconciler.write_detailed(ride("r4", 2500, ts(2025, 3, 10, 3)))

        self.assertEqual(outcome.business_date, DAY)
        self.assertEqual(store.operations, [("put", ["r4"])])
        self.assertEqual(len(reconciler.records_for_day(DAY)), 4)

    def test_delete_record(self) -> None:
        store = MemoryRecordStore(_detailed_day())
        DailyRecordReconciler(store, 9, TOKYO).delete_record("r2")
        self.assertNotIn("r2", store.rows)


class BusinessDateLookupTests(unittest.TestCase):
    def test_pinned_summary_survives_start_hour_change(self) -> None:
        store = MemoryRecordStore([summary(DAY, 20000, 5, hour=9)])
        reconciler = DailyRecordReconciler(store, 10, TOKYO)

        self.assertEqual([record.id for record in reconciler.records_for_day(DAY)], ["simple_2025-03-09"])
        self.assertEqual(reconciler.records_for_day(date(2025, 3, 8)), [])

    def test_detailed_records_follow_current_start_hour(self) -> None:
        store = MemoryRecordStore([ride("r1", 1000, ts(2025, 3, 10, 8, 30))])

        self.assertEqual(len(DailyRecordReconciler(store, 9, TOKYO).records_for_day(DAY)), 1)
        self.assertEqual(len(DailyRecordReconciler(store, 8, TOKYO).records_for_day(DAY)), 0)

    def test_counting_records_between_mixes_modes_per_day(self) -> None:
        store = MemoryRecordStore(_detailed_day() + [summary(date(2025, 3, 11), 9000, 3)])
        reconciler = DailyRecordReconciler(store, 9, TOKYO)

        counting = reconciler.counting_records_between(date(2025, 3, 9), date(2025, 3, 11))

        self.assertEqual(sum(record.amount for record in counting), 27000)

    def test_summary_entered_days_later_is_still_replaced(self) -> None:
        first_day = date(2025, 3, 1)
        late = summary(first_day, 15000, 4, record_id="a", timestamp=ts(2025, 3, 10, 12))
        store = MemoryRecordStore([late])
        reconciler = DailyRecordReconciler(store, 9, TOKYO)

        self.assertEqual([record.id for record in reconciler.records_for_day(first_day)], ["a"])
        outcome = reconciler.write_simple_summary(summary(first_day, 20000, 5, record_id="b"))

        self.assertEqual(outcome.deleted_ids, ("a",))
        self.assertEqual(list(store.rows), ["b"])

    def test_summary_entered_days_later_conflicts_with_rides(self) -> None:
        first_day = date(2025, 3, 1)
        store = MemoryRecordStore([summary(first_day, 15000, 4, timestamp=ts(2025, 3, 10, 12))])
        reconciler = DailyRecordReconciler(store, 9, TOKYO)

        with self.assertRaises(ReconciliationConflict) as exc:
            reconciler.write_detailed(ride("r1", 2000, ts(2025, 3, 1, 13)))
        self.assertEqual(exc.exception.existing_total, 15000)


if __name__ == "__main__":
    unittest.main()

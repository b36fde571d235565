import math
from datetime import datetime, timedelta, timezone

from django.test import SimpleTestCase

from reliability.services import GrowthEstimator, parse_timestamp

from .factories import NOW, days_ago


class ParseTimestampTests(SimpleTestCase):
    def test_zulu_suffix(self):
        self.assertEqual(
            parse_timestamp("2024-01-01T00:00:00Z"),
            datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

    def test_offsets_are_converted_to_utc(self):
        self.assertEqual(
            parse_timestamp("2024-01-01T05:00:00-07:00"),
            datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
        )

    def test_naive_values_are_utc(self):
        self.assertEqual(
            parse_timestamp("2024-01-01T00:00:00"),
            datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        self.assertEqual(
            parse_timestamp(datetime(2024, 1, 1)),
            datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

    def test_garbage(self):
        self.assertIsNone(parse_timestamp("yesterday"))
        self.assertIsNone(parse_timestamp(""))
        self.assertIsNone(parse_timestamp(None))


class GrowthSlopeTests(SimpleTestCase):
    def setUp(self):
        self.growth = GrowthEstimator()

    def test_no_history_is_none(self):
        self.assertIsNone(self.growth.slope([]))
        self.assertIsNone(self.growth.slope(None))
        self.assertIsNone(self.growth.slope(["not a date", "2024-13-45"]))

    def test_single_week_is_flat(self):
        self.assertEqual(self.growth.slope(days_ago(3)), 0.0)
        self.assertEqual(self.growth.slope(days_ago(1, 2, 3)), 0.0)

    def test_late_concentration_is_positive(self):
        slope = self.growth.slope(days_ago(30, 1, 1, 1, 1, 1))
        self.assertGreater(slope, 0)

    def test_early_concentration_is_negative(self):
        slope = self.growth.slope(days_ago(30, 30, 30, 30, 30, 1))
        self.assertLess(slope, 0)

    def test_unparseable_entries_are_dropped(self):
        clean = self.growth.slope(days_ago(30, 1, 1, 1, 1, 1))
        noisy = self.growth.slope(days_ago(30, 1, 1, 1, 1, 1) + ["garbage", None])
        self.assertEqual(clean, noisy)

    def test_order_does_not_matter(self):
        timestamps = days_ago(30, 1, 1, 1, 1, 1)
        self.assertEqual(self.growth.slope(timestamps), self.growth.slope(timestamps[::-1]))

    def test_one_review_per_week_is_flat(self):
        weekly = days_ago(*range(0, 7 * 20, 7))
        self.assertAlmostEqual(self.growth.slope(weekly), 0.0, places=9)

    def test_steady_five_day_cadence_is_near_zero(self):
        steady = days_ago(*range(0, 365, 5))
        self.assertLess(abs(self.growth.slope(steady)), 0.01)

    def test_month_of_five_day_steps_aliases_into_weekly_bins(self):
        month = days_ago(*range(0, 31, 5))
        self.assertEqual(self.growth.weekly_counts(month), [2, 1, 2, 1, 1])
        # OLS of log1p([2, 1, 2, 1, 1]) over x = 0..4 is ln(2/3) / 5
        self.assertAlmostEqual(self.growth.slope(month), -0.08109302, places=6)

    def test_window_is_measured_from_newest_review(self):
        weekly = days_ago(*range(0, 7 * 20, 7))
        with_ancient = weekly + days_ago(800)
        self.assertEqual(self.growth.weekly_counts(with_ancient), self.growth.weekly_counts(weekly))

        # A dormant app is judged on its own last year, not on today.
        dormant = [(NOW - timedelta(days=1000 + d)).isoformat() for d in range(0, 7 * 20, 7)]
        self.assertAlmostEqual(self.growth.slope(dormant), 0.0, places=9)

    def test_gaps_are_zero_filled(self):
        self.assertEqual(self.growth.weekly_counts(days_ago(21, 0, 0)), [1, 0, 0, 2])

    def test_result_is_always_finite(self):
        for timestamps in (days_ago(0), days_ago(0, 0, 0, 0), days_ago(*range(0, 400, 3))):
            self.assertTrue(math.isfinite(self.growth.slope(timestamps)))


class RecencyWeightedGrowthTests(SimpleTestCase):
    def setUp(self):
        self.growth = GrowthEstimator(recency_weighted=True)

    def test_direction_matches_unweighted_fit(self):
        self.assertGreater(self.growth.slope(days_ago(30, 1, 1, 1, 1, 1)), 0)
        self.assertLess(self.growth.slope(days_ago(30, 30, 30, 30, 30, 1)), 0)

    def test_degenerate_inputs(self):
        self.assertIsNone(self.growth.slope([]))
        self.assertEqual(self.growth.slope(days_ago(2)), 0.0)

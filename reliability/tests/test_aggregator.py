from django.test import SimpleTestCase, override_settings

from reliability.cache import TTLCache
from reliability.domain import FetchResult, RegionalRatingSample
from reliability.services import RatingAggregator

from .factories import LOCMEM_CACHES


class FakeStorefronts:
    """Answers lookup_region from a {region: count | (count, avg) | FetchResult} table."""

    def __init__(self, table, default=None):
        self.table = table
        self.default = default
        self.calls = []

    def lookup_region(self, track_id, country, timeout=None):
        self.calls.append(country)
        value = self.table.get(country, self.default)
        if isinstance(value, FetchResult):
            return value
        if value is None:
            return FetchResult.success(None)
        count, avg = value if isinstance(value, tuple) else (value, 4.0)
        return FetchResult.success(RegionalRatingSample(country, count, avg))


@override_settings(CACHES=LOCMEM_CACHES)
class RatingAggregatorTests(SimpleTestCase):
    def setUp(self):
        self.cache = TTLCache()
        self.cache.backend.clear()

    def aggregator(self, client):
        return RatingAggregator(client=client, cache=self.cache)

    def test_early_stop_when_tail_is_negligible(self):
        client = FakeStorefronts(
            {"us": 1000, "gb": 500, "ca": 300, "au": 200, "de": 100}, default=1
        )
        result = self.aggregator(client).aggregate("1001")

        # After fr, it, es the last three add 3 / 2103 < 3%
        self.assertEqual(client.calls, ["us", "gb", "ca", "au", "de", "fr", "it", "es"])
        self.assertEqual(result.total_estimated, 2103)
        self.assertEqual(len(result.regions_used), 8)

    def test_hard_cap_on_storefronts(self):
        client = FakeStorefronts({}, default=1000)
        result = self.aggregator(client).aggregate("1001")
        self.assertEqual(len(client.calls), RatingAggregator.MAX_STOREFRONTS)
        self.assertEqual(result.total_estimated, 15_000)

    def test_weighted_average_and_regions_used(self):
        client = FakeStorefronts({"us": (100, 4.0), "gb": (300, 5.0)}, default=(0, 0.0))
        result = self.aggregator(client).aggregate("1001")
        self.assertEqual(result.total_estimated, 400)
        self.assertAlmostEqual(result.weighted_average, 4.75)
        self.assertEqual(result.regions_used, ("us", "gb"))

    def test_region_failure_is_isolated(self):
        client = FakeStorefronts(
            {"gb": FetchResult.failure("timeout", "3s")}, default=1000
        )
        with self.assertLogs("reliability.services", level="WARNING"):
            result = self.aggregator(client).aggregate("1001")

        self.assertNotIn("gb", result.regions_used)
        # A failed storefront is not counted against the cap
        self.assertEqual(len(client.calls), RatingAggregator.MAX_STOREFRONTS + 1)
        self.assertEqual(result.total_estimated, 15_000)
        self.assertIsNone(self.cache.get("apple_ratings:1001:gb"))
        self.assertIsNotNone(self.cache.get("apple_ratings:1001:us"))

    def test_storefront_without_app_is_not_processed_or_cached(self):
        client = FakeStorefronts({"us": 5000, "gb": None}, default=100)
        result = self.aggregator(client).aggregate("1001")
        self.assertIn("gb", client.calls)
        self.assertNotIn("gb", result.regions_used)
        self.assertIsNone(self.cache.get("apple_ratings:1001:gb"))
        # 15 storefronts processed besides gb
        self.assertEqual(len(client.calls), RatingAggregator.MAX_STOREFRONTS + 1)

    def test_no_ratings_anywhere(self):
        client = FakeStorefronts({}, default=None)
        result = self.aggregator(client).aggregate("1001")
        self.assertEqual(result.total_estimated, 0)
        self.assertEqual(result.weighted_average, 0.0)
        self.assertEqual(result.regions_used, ())
        self.assertEqual(len(client.calls), len(RatingAggregator.STOREFRONTS))
        self.assertIsNone(self.cache.get("apple_ratings_agg_v1:1001"))

    def test_total_outage_is_not_cached(self):
        down = FakeStorefronts({}, default=FetchResult.failure("network", "offline"))
        with self.assertLogs("reliability.services", level="WARNING"):
            result = self.aggregator(down).aggregate("1001")
        self.assertEqual(result.total_estimated, 0)
        self.assertIsNone(self.cache.get("apple_ratings_agg_v1:1001"))

        back_up = FakeStorefronts({}, default=1000)
        result = self.aggregator(back_up).aggregate("1001")
        self.assertEqual(len(back_up.calls), RatingAggregator.MAX_STOREFRONTS)
        self.assertEqual(result.total_estimated, 15_000)

    def test_aggregate_is_cached(self):
        self.aggregator(FakeStorefronts({}, default=1000)).aggregate("1001")

        again = FakeStorefronts({}, default=1)
        result = self.aggregator(again).aggregate("1001")
        self.assertEqual(again.calls, [])
        self.assertEqual(result.total_estimated, 15_000)

    def test_regional_samples_are_reused(self):
        self.aggregator(FakeStorefronts({}, default=1000)).aggregate("1001")
        self.cache.delete("apple_ratings_agg_v1:1001")

        again = FakeStorefronts({}, default=1)
        result = self.aggregator(again).aggregate("1001")
        self.assertEqual(again.calls, [])
        self.assertEqual(result.total_estimated, 15_000)

    def test_malformed_regional_entry_is_refetched(self):
        self.cache.set("apple_ratings:1001:us", {"rating_count": "lots"}, ttl=60)
        client = FakeStorefronts({"us": 10}, default=None)
        with self.assertLogs("reliability.services", level="WARNING"):
            result = self.aggregator(client).aggregate("1001")
        self.assertIn("us", client.calls)
        self.assertEqual(result.total_estimated, 10)

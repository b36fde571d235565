from datetime import datetime
from unittest.mock import MagicMock, patch

import requests
from django.test import SimpleTestCase
from google_play_scraper.exceptions import NotFoundError

from reliability.clients import AppStoreClient, PlayStoreClient, clean_num, humanize_genre_id
from reliability.domain import APP_STORE, GOOGLE_PLAY


def json_response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


ITUNES_RESULT = {
    "trackId": 1001,
    "trackName": "Ledgerly: Budget & Bills",
    "primaryGenreName": "Finance",
    "description": "Track every bill.",
    "artistName": "Ledgerly Inc",
    "userRatingCount": 12500,
    "averageUserRating": 4.7,
    "trackViewUrl": "https://apps.apple.com/us/app/ledgerly/id1001",
}


class HelperTests(SimpleTestCase):
    def test_clean_num(self):
        self.assertEqual(clean_num("1,000,000+"), 1_000_000)
        self.assertEqual(clean_num("2.5M"), 2_500_000)
        self.assertEqual(clean_num("10k"), 10_000)
        self.assertEqual(clean_num("5B+"), 5_000_000_000)
        self.assertEqual(clean_num(">500"), 500)
        self.assertEqual(clean_num(42), 42)
        self.assertEqual(clean_num(None), 0)
        self.assertEqual(clean_num("n/a"), 0)

    def test_parse_track_id(self):
        self.assertEqual(
            AppStoreClient.parse_track_id("https://apps.apple.com/us/app/ledgerly/id1001?l=en"),
            "1001",
        )
        self.assertIsNone(AppStoreClient.parse_track_id("https://example.com/app"))
        self.assertIsNone(AppStoreClient.parse_track_id(None))

    def test_humanize_genre_id(self):
        self.assertEqual(humanize_genre_id("MUSIC_AND_AUDIO"), "Music & Audio")
        self.assertEqual(humanize_genre_id("FINANCE"), "Finance")
        self.assertEqual(humanize_genre_id(""), "")


@patch("reliability.clients.requests.get")
class AppStoreClientTests(SimpleTestCase):
    def setUp(self):
        self.client = AppStoreClient(country="us", timeout=5)

    def test_search_converts_results(self, mock_get):
        mock_get.return_value = json_response({"results": [ITUNES_RESULT]})
        result = self.client.search("Ledgerly", limit=5)

        self.assertTrue(result.ok)
        [candidate] = result.value
        self.assertEqual(candidate.id, "1001")
        self.assertEqual(candidate.platform, APP_STORE)
        self.assertEqual(candidate.category, "Finance")
        self.assertEqual(candidate.developer, "Ledgerly Inc")
        self.assertEqual(candidate.rating_count, 12500)
        params = mock_get.call_args.kwargs["params"]
        self.assertEqual(params["entity"], "software")
        self.assertEqual(params["limit"], 5)

    def test_search_timeout_is_a_fetch_error(self, mock_get):
        mock_get.side_effect = requests.Timeout("read timed out")
        with self.assertLogs("reliability.clients", level="ERROR"):
            result = self.client.search("Ledgerly")
        self.assertFalse(result.ok)
        self.assertEqual(result.error.kind, "timeout")

    def test_lookup_region(self, mock_get):
        mock_get.return_value = json_response({"results": [ITUNES_RESULT]})
        result = self.client.lookup_region("1001", "gb", timeout=3)
        self.assertEqual(result.value.region, "gb")
        self.assertEqual(result.value.rating_count, 12500)
        self.assertEqual(result.value.average_rating, 4.7)
        self.assertEqual(mock_get.call_args.kwargs["timeout"], 3)

    def test_lookup_region_without_the_app(self, mock_get):
        mock_get.return_value = json_response({"resultCount": 0, "results": []})
        result = self.client.lookup_region("1001", "cn")
        self.assertTrue(result.ok)
        self.assertIsNone(result.value)

    def test_lookup_region_http_error(self, mock_get):
        response = json_response({})
        response.raise_for_status.side_effect = requests.HTTPError("503")
        mock_get.return_value = response
        result = self.client.lookup_region("1001", "de")
        self.assertEqual(result.error.kind, "http")

    def test_fetch_details_attaches_review_timestamps(self, mock_get):
        feed = {"feed": {"entry": {"updated": {"label": "2025-05-30T10:00:00-07:00"}}}}
        mock_get.side_effect = [json_response({"results": [ITUNES_RESULT]}), json_response(feed)]
        result = self.client.fetch_details("1001")
        self.assertEqual(result.value.review_timestamps, ("2025-05-30T10:00:00-07:00",))

    def test_fetch_details_unknown_id(self, mock_get):
        mock_get.return_value = json_response({"results": []})
        result = self.client.fetch_details("999")
        self.assertEqual(result.error.kind, "not_found")

    def test_review_feed_failure_is_empty(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("offline")
        with self.assertLogs("reliability.clients", level="WARNING"):
            self.assertEqual(self.client.review_timestamps("1001"), [])


class PlayStoreClientTests(SimpleTestCase):
    def setUp(self):
        self.client = PlayStoreClient(country="us", lang="en", review_count=10)

    @patch("reliability.clients.gplay_search")
    def test_search_dedupes(self, mock_search):
        mock_search.return_value = [
            {"appId": "com.ledgerly.app", "title": "Ledgerly", "genre": "Finance", "developer": "Ledgerly Inc."},
            {"appId": "com.ledgerly.app", "title": "Ledgerly"},
            {"appId": "com.other", "title": "Ledgerly Lite"},
            {"title": "no id"},
        ]
        result = self.client.search("Ledgerly", limit=5)
        self.assertEqual([c.id for c in result.value], ["com.ledgerly.app", "com.other"])
        self.assertEqual(result.value[0].platform, GOOGLE_PLAY)

    @patch("reliability.clients.gplay_reviews")
    @patch("reliability.clients.gplay_app")
    def test_fetch_details(self, mock_app, mock_reviews):
        mock_app.return_value = {
            "title": "Ledgerly",
            "genre": None,
            "genreId": "FINANCE",
            "developer": "Ledgerly Inc.",
            "ratings": 2300,
            "score": 4.4,
            "installs": "1,000,000+",
            "minInstalls": 1_000_000,
        }
        mock_reviews.return_value = ([{"at": datetime(2025, 5, 30, 8, 0)}], None)

        result = self.client.fetch_details("com.ledgerly.app")

        candidate = result.value
        self.assertEqual(candidate.category, "Finance")
        self.assertEqual(candidate.rating_count, 2300)
        self.assertEqual(candidate.install_floor, 1_000_000)
        self.assertEqual(candidate.review_timestamps, ("2025-05-30T08:00:00+00:00",))
        self.assertEqual(mock_reviews.call_args.kwargs["count"], 10)

    @patch("reliability.clients.gplay_app")
    def test_fetch_details_not_found(self, mock_app):
        mock_app.side_effect = NotFoundError("App not found(404).")
        result = self.client.fetch_details("com.gone")
        self.assertEqual(result.error.kind, "not_found")

    @patch("reliability.clients.gplay_search")
    def test_search_failure(self, mock_search):
        mock_search.side_effect = RuntimeError("blocked")
        with self.assertLogs("reliability.clients", level="ERROR"):
            result = self.client.search("Ledgerly")
        self.assertEqual(result.error.kind, "network")

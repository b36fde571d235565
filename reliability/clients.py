"""
Store clients for the public Apple iTunes API and Google Play.

Both clients turn raw store payloads into Candidate records and never raise
for network problems: every call returns a FetchResult the caller branches
on. Calls are made from the user's local machine; no central server is
involved.
"""

import logging
import re
from datetime import timezone

import requests
from google_play_scraper import Sort
from google_play_scraper import app as gplay_app
from google_play_scraper import reviews as gplay_reviews
from google_play_scraper import search as gplay_search
from google_play_scraper.exceptions import NotFoundError

from .conf import get_setting
from .domain import APP_STORE, GOOGLE_PLAY, Candidate, FetchResult, RegionalRatingSample

logger = logging.getLogger(__name__)


def clean_num(value) -> int:
    """
    Parse a store count into an int.

    Accepts ints/floats and badge strings such as "1,000,000+", "2.5M",
    "10k" or "5B+". Anything unparseable is 0.
    """
    if not value:
        return 0
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)

    s = str(value).lower().strip()
    for ch in (",", "+", ">", "<"):
        s = s.replace(ch, "")

    scale = 1
    if s.endswith("b"):
        scale, s = 1_000_000_000, s[:-1]
    elif s.endswith("m"):
        scale, s = 1_000_000, s[:-1]
    elif s.endswith("k"):
        scale, s = 1_000, s[:-1]

    try:
        return int(float(s.strip()) * scale)
    except ValueError:
        return 0


def _request_error(e: Exception) -> tuple[str, str]:
    """Map a requests exception onto a FetchError kind."""
    if isinstance(e, requests.Timeout):
        return "timeout", str(e)
    if isinstance(e, requests.HTTPError):
        return "http", str(e)
    if isinstance(e, ValueError):
        return "malformed", str(e)
    return "network", str(e)


# --------------------------------------------------------------------------- #
# Apple App Store (iTunes Search API)
# --------------------------------------------------------------------------- #


class AppStoreClient:
    """
    Searches the public iTunes Search API and its lookup / review feeds.

    No authentication required.
    """

    SEARCH_URL = "https://itunes.apple.com/search"
    LOOKUP_URL = "https://itunes.apple.com/lookup"
    REVIEWS_URL = (
        "https://itunes.apple.com/{country}/rss/customerreviews/"
        "id={track_id}/sortby=mostrecent/json"
    )

    def __init__(self, country: str | None = None, timeout: float | None = None):
        self.country = country or get_setting("RELIABILITY_COUNTRY")
        self.timeout = timeout or get_setting("RELIABILITY_REQUEST_TIMEOUT")

    def search(self, term: str, limit: int | None = None) -> FetchResult:
        """Search for iOS apps; returns up to ``limit`` candidates in store order."""
        limit = limit or get_setting("RELIABILITY_SEARCH_LIMIT")
        try:
            response = requests.get(
                self.SEARCH_URL,
                params={
                    "term": term,
                    "country": self.country,
                    "entity": "software",
                    "limit": limit,
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            results = response.json().get("results", [])
        except Exception as e:
            logger.error(f"iTunes search failed for '{term}': {e}")
            return FetchResult.failure(*_request_error(e))

        return FetchResult.success([self._to_candidate(r) for r in results[:limit]])

    def fetch_details(self, track_id) -> FetchResult:
        """Look up one app and attach its most recent review timestamps."""
        try:
            response = requests.get(
                self.LOOKUP_URL,
                params={"id": track_id, "country": self.country},
                timeout=self.timeout,
            )
            response.raise_for_status()
            results = response.json().get("results", [])
        except Exception as e:
            logger.error(f"iTunes lookup failed for id {track_id}: {e}")
            return FetchResult.failure(*_request_error(e))

        if not results:
            return FetchResult.failure("not_found", f"No App Store app with id {track_id}")

        timestamps = self.review_timestamps(track_id)
        return FetchResult.success(
            self._to_candidate(results[0], review_timestamps=timestamps)
        )

    def lookup_region(self, track_id, country: str, timeout: float | None = None) -> FetchResult:
        """
        Fetch the rating count of one storefront.

        The value is None when the storefront does not carry the app.
        """
        timeout = timeout or get_setting("RELIABILITY_REGION_TIMEOUT")
        try:
            response = requests.get(
                self.LOOKUP_URL,
                params={"id": track_id, "country": country},
                timeout=timeout,
            )
            response.raise_for_status()
            data = response.json()
        except Exception as e:
            return FetchResult.failure(*_request_error(e))

        results = data.get("results", []) if isinstance(data, dict) else []
        if not results:
            return FetchResult.success(None)
        r = results[0]
        try:
            sample = RegionalRatingSample(
                region=country,
                rating_count=int(r.get("userRatingCount") or 0),
                average_rating=float(r.get("averageUserRating") or 0),
            )
        except (TypeError, ValueError) as e:
            return FetchResult.failure("malformed", str(e))
        return FetchResult.success(sample)

    def review_timestamps(self, track_id, country: str | None = None) -> list[str]:
        """Return the ``updated`` timestamps of the most recent reviews (best effort)."""
        url = self.REVIEWS_URL.format(country=country or self.country, track_id=track_id)
        try:
            response = requests.get(url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except Exception as e:
            logger.warning(f"Failed to fetch iOS reviews RSS for {track_id}: {e}")
            return []

        entries = data.get("feed", {}).get("entry", [])
        # A single review comes back as an object, not a list.
        if isinstance(entries, dict):
            entries = [entries]

        timestamps = []
        for entry in entries:
            label = entry.get("updated", {}).get("label")
            if label:
                timestamps.append(label)
        return timestamps

    @staticmethod
    def parse_track_id(url: str) -> str | None:
        """Extract the numeric id from ``https://apps.apple.com/us/app/name/id123``."""
        match = re.search(r"/id(\d+)", url or "")
        return match.group(1) if match else None

    @staticmethod
    def _to_candidate(result: dict, review_timestamps=()) -> Candidate:
        """Convert an iTunes API result into a Candidate."""
        return Candidate(
            id=str(result.get("trackId", "")),
            title=result.get("trackName", "") or "",
            platform=APP_STORE,
            category=result.get("primaryGenreName", "") or "",
            description=result.get("description", "") or "",
            developer=result.get("artistName") or result.get("sellerName", "") or "",
            rating_count=clean_num(result.get("userRatingCount", 0)),
            average_rating=float(result.get("averageUserRating") or 0),
            review_timestamps=tuple(review_timestamps),
            url=result.get("trackViewUrl", "") or "",
        )


# --------------------------------------------------------------------------- #
# Google Play
# --------------------------------------------------------------------------- #


def humanize_genre_id(genre_id: str) -> str:
    """MUSIC_AND_AUDIO -> Music & Audio"""
    if not genre_id:
        return ""
    words = genre_id.lower().replace("_", " ").split()
    return " ".join("&" if w == "and" else w.capitalize() for w in words)


class PlayStoreClient:
    """Reads Google Play listings through google-play-scraper."""

    DETAILS_URL = "https://play.google.com/store/apps/details?id={app_id}"

    def __init__(self, country: str | None = None, lang: str | None = None,
                 review_count: int = 100):
        self.country = country or get_setting("RELIABILITY_COUNTRY")
        self.lang = lang or get_setting("RELIABILITY_LANG")
        self.review_count = review_count

    def search(self, query: str, limit: int | None = None) -> FetchResult:
        """Search Google Play; candidates carry only what the result list shows."""
        limit = limit or get_setting("RELIABILITY_SEARCH_LIMIT")
        try:
            results = gplay_search(
                query, lang=self.lang, country=self.country, n_hits=limit
            )
        except Exception as e:
            logger.error(f"Google Play search failed for '{query}': {e}")
            return FetchResult.failure("network", str(e))

        candidates = []
        seen = set()
        for r in results or []:
            app_id = r.get("appId")
            if not app_id or app_id in seen:
                continue
            seen.add(app_id)
            candidates.append(
                Candidate(
                    id=app_id,
                    title=r.get("title") or "",
                    platform=GOOGLE_PLAY,
                    category=r.get("genre") or "",
                    description=r.get("description") or "",
                    developer=r.get("developer") or "",
                    url=self.DETAILS_URL.format(app_id=app_id),
                )
            )
            if len(candidates) >= limit:
                break
        return FetchResult.success(candidates)

    def fetch_details(self, app_id: str) -> FetchResult:
        """Fetch the full listing, install badge and newest review timestamps."""
        try:
            details = gplay_app(app_id, lang=self.lang, country=self.country)
        except NotFoundError:
            return FetchResult.failure("not_found", f"No Google Play app with id {app_id}")
        except Exception as e:
            logger.error(f"Google Play details failed for {app_id}: {e}")
            return FetchResult.failure("network", str(e))

        floor = clean_num(details.get("minInstalls")) or clean_num(details.get("installs"))
        candidate = Candidate(
            id=app_id,
            title=details.get("title") or "",
            platform=GOOGLE_PLAY,
            category=details.get("genre") or humanize_genre_id(details.get("genreId", "")),
            description=details.get("description") or "",
            developer=details.get("developer") or "",
            rating_count=clean_num(details.get("ratings")),
            average_rating=float(details.get("score") or 0),
            install_floor=floor or None,
            review_timestamps=tuple(self.review_timestamps(app_id)),
            url=details.get("url") or self.DETAILS_URL.format(app_id=app_id),
        )
        return FetchResult.success(candidate)

    def review_timestamps(self, app_id: str) -> list[str]:
        """Return ISO timestamps of the newest reviews (best effort)."""
        if self.review_count <= 0:
            return []
        try:
            result, _ = gplay_reviews(
                app_id,
                lang=self.lang,
                country=self.country,
                sort=Sort.NEWEST,
                count=self.review_count,
            )
        except Exception as e:
            logger.warning(f"Failed to fetch Google Play reviews for {app_id}: {e}")
            return []

        timestamps = []
        for raw in result:
            at = raw.get("at")
            if at is None:
                continue
            # google-play-scraper returns naive datetimes in UTC
            if at.tzinfo is None:
                at = at.replace(tzinfo=timezone.utc)
            timestamps.append(at.isoformat())
        return timestamps

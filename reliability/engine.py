"""
End-to-end scoring: resolve the app on both stores, estimate installs and
growth, and turn them into a reliability report.

The App Store is resolved first so its developer name can disambiguate the
Google Play search. Either platform may come up empty; one resolved store is
enough for a (partial) report.
"""

import hashlib
import json
import logging
import threading
from dataclasses import replace

from .cache import SingleFlight, TTLCache
from .clients import AppStoreClient, PlayStoreClient
from .conf import get_setting
from .domain import (
    APP_STORE,
    GOOGLE_PLAY,
    MatchScore,
    NotFound,
    Query,
    ReliabilityReport,
    ResolvedIdentity,
)
from .matching import is_name_match, resolver_for, tagline_keywords
from .services import DownloadEstimator, GrowthEstimator, RatingAggregator, ReliabilityScorer

logger = logging.getLogger(__name__)


class ScoringContext:
    """Cancellation flag checked between the stages of one scoring run."""

    def __init__(self):
        self._cancelled = threading.Event()

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


class ReliabilityService:
    """
    Resolves an app on both stores and scores it.

    Every collaborator can be injected; by default the service talks to the
    live stores and caches through the configured Django cache.
    """

    SCORE_KEY = "score_v1:{digest}"

    def __init__(self, app_store=None, play_store=None, cache=None, aggregator=None,
                 estimator=None, growth=None, scorer=None, flight=None):
        self.cache = cache or TTLCache()
        self.app_store = app_store or AppStoreClient()
        self.play_store = play_store or PlayStoreClient()
        self.aggregator = aggregator or RatingAggregator(client=self.app_store, cache=self.cache)
        self.estimator = estimator or DownloadEstimator()
        self.growth = growth or GrowthEstimator()
        self.scorer = scorer or ReliabilityScorer()
        self.flight = flight or SingleFlight()

    @classmethod
    def cache_key(cls, app_name, category_hint=None, tagline_hint=None,
                  developer_hint=None, app_store_url=None) -> str:
        """Content-derived key: same (normalized) inputs, same key."""
        payload = json.dumps(
            [
                (app_name or "").strip().lower(),
                (category_hint or "").strip().lower(),
                (tagline_hint or "").strip().lower(),
                (developer_hint or "").strip().lower(),
                (app_store_url or "").strip(),
            ]
        )
        digest = hashlib.sha1(payload.encode("utf-8")).hexdigest()
        return cls.SCORE_KEY.format(digest=digest)

    def resolve_and_score(self, app_name: str, category_hint: str | None = None,
                          tagline_hint: str | None = None, developer_hint: str | None = None,
                          app_store_url: str | None = None,
                          context: ScoringContext | None = None):
        """
        Score one app.

        Args:
            app_name: Name as listed in the directory.
            category_hint: Directory category; filters App Store candidates
                and selects the install multiplier.
            tagline_hint: Short description, used for description matching
                and to widen the Google Play search.
            developer_hint: Known developer. Falls back to the developer of
                the resolved App Store listing.
            app_store_url: Skips the App Store search when given.
            context: Optional ScoringContext; cancelling it abandons the run.

        Returns:
            ReliabilityReport, NotFound when neither store has the app, or
            None when the run was cancelled.
        """
        name = (app_name or "").strip()
        if not name:
            return NotFound(None, "empty app name")

        key = self.cache_key(name, category_hint, tagline_hint, developer_hint, app_store_url)
        cached = self.cache.get(key)
        if isinstance(cached, ReliabilityReport):
            logger.info(f"[Reliability] Cache HIT for '{name}'")
            return cached

        query = Query(
            name=name,
            category=category_hint or None,
            tagline=tagline_hint or None,
            developer_hint=developer_hint or None,
        )
        return self.flight.do(key, self._compute, key, query, app_store_url, context)

    # ----------------------------------------------------------------------- #
    # Pipeline
    # ----------------------------------------------------------------------- #

    def _compute(self, key: str, query: Query, app_store_url, context):
        if self._cancelled(context, query.name, "before App Store"):
            return None

        try:
            ios, aggregated = self._resolve_app_store(query, app_store_url, context)
        except Exception:
            logger.exception(f"[Reliability] App Store stage failed for '{query.name}'")
            ios, aggregated = NotFound(APP_STORE, "unexpected error"), None

        if self._cancelled(context, query.name, "before Google Play"):
            return None

        android_query = query
        if not query.developer_hint and ios:
            android_query = replace(query, developer_hint=ios.candidate.developer or None)
        try:
            android = self._resolve_play_store(android_query, context)
        except Exception:
            logger.exception(f"[Reliability] Google Play stage failed for '{query.name}'")
            android = NotFound(GOOGLE_PLAY, "unexpected error")

        if self._cancelled(context, query.name, "before scoring"):
            return None

        if not ios and not android:
            logger.info(f"[Reliability] '{query.name}' not found on either store")
            return NotFound(None, "no store listing matched")

        try:
            report = self._build_report(query, ios, android, aggregated)
        except Exception:
            logger.exception(f"[Reliability] Scoring failed for '{query.name}'")
            return NotFound(None, "scoring failed")
        if self._cancelled(context, query.name, "before caching"):
            return None

        self.cache.set(key, report, get_setting("RELIABILITY_SCORE_TTL"))
        return report

    def _resolve_app_store(self, query: Query, app_store_url, context):
        """Return (ResolvedIdentity | NotFound, AggregatedRating | None)."""
        track_id = AppStoreClient.parse_track_id(app_store_url) if app_store_url else None

        if track_id:
            result = self.app_store.fetch_details(track_id)
            if not result.ok:
                return NotFound(APP_STORE, f"lookup failed ({result.error.kind})"), None
            identity = ResolvedIdentity(
                candidate=result.value,
                match=MatchScore(category_score=1.0, description_score=1.0, developer_score=1.0),
            )
            logger.info(f"{APP_STORE}: using {track_id} from the given URL")
        else:
            result = self.app_store.search(query.name)
            if not result.ok:
                return NotFound(APP_STORE, f"search failed ({result.error.kind})"), None
            identity = resolver_for(APP_STORE).resolve(query, result.value, APP_STORE)
            if not identity:
                return identity, None
            timestamps = self.app_store.review_timestamps(identity.id)
            identity = replace(
                identity,
                candidate=replace(identity.candidate, review_timestamps=tuple(timestamps)),
            )

        if context is not None and context.cancelled:
            return identity, None

        aggregated = self.aggregator.aggregate(identity.id)
        if aggregated.total_estimated > 0:
            identity = replace(
                identity,
                candidate=identity.candidate.with_rating_count(aggregated.total_estimated),
            )
        return identity, aggregated

    def _resolve_play_store(self, query: Query, context):
        searches = [query.name]
        keywords = tagline_keywords(query.tagline)
        if keywords:
            searches.append(f"{query.name} {keywords}")

        candidates = []
        seen = set()
        failures = 0
        for term in searches:
            result = self.play_store.search(term)
            if not result.ok:
                failures += 1
                continue
            for candidate in result.value:
                if candidate.id not in seen:
                    seen.add(candidate.id)
                    candidates.append(candidate)

        if failures == len(searches):
            return NotFound(GOOGLE_PLAY, "search failed")

        detailed = []
        for candidate in candidates:
            # Details cost a request each; skip what can never win.
            if not is_name_match(query.name, candidate.title):
                continue
            if context is not None and context.cancelled:
                break
            result = self.play_store.fetch_details(candidate.id)
            if result.ok:
                detailed.append(result.value)
            else:
                logger.warning(
                    f"{GOOGLE_PLAY}: details for {candidate.id} unavailable "
                    f"({result.error.kind})"
                )

        return resolver_for(GOOGLE_PLAY).resolve(query, detailed, GOOGLE_PLAY)

    def _build_report(self, query: Query, ios, android, aggregated) -> ReliabilityReport:
        android_input = None
        if android:
            c = android.candidate
            android_input = {
                "ratings": c.rating_count,
                "min_installs": c.install_floor,
                "genre": c.category,
            }
        ios_input = None
        if ios:
            ios_input = {"ratings": ios.candidate.rating_count, "genre": ios.candidate.category}

        downloads = self.estimator.calculate(android_input, ios_input, query.category)

        slope, source = None, None
        for identity in (ios, android):
            if identity and identity.candidate.review_timestamps:
                slope = self.growth.slope(identity.candidate.review_timestamps, query.name)
                source = identity.platform
                break

        card = self.scorer.score(downloads.total, slope, query.name)

        identities = {}
        missing = []
        for platform, identity in ((APP_STORE, ios), (GOOGLE_PLAY, android)):
            if identity:
                identities[platform] = identity
            else:
                missing.append(platform)

        return ReliabilityReport(
            app_name=query.name,
            card=card,
            downloads=downloads,
            growth_slope=slope,
            growth_source=source,
            identities=identities,
            aggregated_rating=aggregated,
            missing_platforms=tuple(missing),
            adoption_label=self.scorer.adoption_label(card.downloads_subscore),
            growth_label=self.scorer.growth_label(card.growth_subscore),
        )

    @staticmethod
    def _cancelled(context, name: str, stage: str) -> bool:
        if context is not None and context.cancelled:
            logger.info(f"[Reliability] Scoring of '{name}' cancelled {stage}")
            return True
        return False


_default_service = None
_default_lock = threading.Lock()


def get_service() -> ReliabilityService:
    """Process-wide service shared by the view and the management command."""
    global _default_service
    with _default_lock:
        if _default_service is None:
            _default_service = ReliabilityService()
        return _default_service


def resolve_and_score(app_name: str, **kwargs):
    """Shortcut for ``get_service().resolve_and_score(...)``."""
    return get_service().resolve_and_score(app_name, **kwargs)

"""
Service classes for global rating aggregation, download estimation, growth
estimation and the final reliability score.

All numbers are estimates derived from public store signals: rating counts,
Google Play install badges and review timestamps.
"""

import logging
import math
from datetime import datetime, timedelta, timezone

from .cache import TTLCache
from .clients import AppStoreClient
from .conf import get_setting
from .domain import (
    APP_STORE,
    GOOGLE_PLAY,
    AggregatedRating,
    DownloadBreakdown,
    DownloadEstimate,
    RegionalRatingSample,
    ScoreCard,
)

logger = logging.getLogger(__name__)


def _interpolate(points: list[tuple[float, float]], x: float) -> float:
    """
    Piecewise-linear interpolation over ascending (x, y) calibration points.

    Values outside the table are clamped to the first/last y.
    """
    if x <= points[0][0]:
        return points[0][1]
    if x >= points[-1][0]:
        return points[-1][1]
    for i in range(1, len(points)):
        x0, y0 = points[i - 1]
        x1, y1 = points[i]
        if x <= x1:
            ratio = (x - x0) / (x1 - x0)
            return y0 + ratio * (y1 - y0)
    return points[-1][1]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# --------------------------------------------------------------------------- #
# Global Rating Aggregator
# --------------------------------------------------------------------------- #


class RatingAggregator:
    """
    Estimates an App Store app's global rating count.

    Apple only exposes rating counts per storefront, so we walk the
    storefronts in priority order and add them up. Most volume sits in a
    handful of countries; once the tail stops moving the total we stop
    fetching.

    Stop rules (checked before each storefront):
      1. Hard cap of MAX_STOREFRONTS storefronts processed.
      2. Early stop: at least MIN_CONTRIBUTORS storefronts contributed and
         the last EARLY_STOP_WINDOW contributions are below
         EARLY_STOP_THRESHOLD of the running total.

    A storefront that errors or times out contributes nothing and is not
    cached; the next aggregation will try it again.
    """

    # Ordered by expected rating volume within each tier.
    STOREFRONTS = [
        "us", "gb", "ca", "au",                 # Tier 1 (English)
        "de", "fr", "it", "es", "pt", "pl",     # Tier 2 (Europe)
        "br", "mx",                             # Tier 2 (LatAm)
        "in", "pk",                             # Tier 2 (Asia, high volume)
        "jp", "kr", "cn", "tw", "sg",           # Tier 1 (Asia, high value)
        "ru",                                   # Tier 2 (Other)
    ]

    MAX_STOREFRONTS = 15
    MIN_CONTRIBUTORS = 5
    EARLY_STOP_WINDOW = 3
    EARLY_STOP_THRESHOLD = 0.03

    AGGREGATE_KEY = "apple_ratings_agg_v1:{track_id}"
    STOREFRONT_KEY = "apple_ratings:{track_id}:{region}"

    def __init__(self, client: AppStoreClient | None = None,
                 cache: TTLCache | None = None, storefronts: list[str] | None = None):
        self.client = client or AppStoreClient()
        self.cache = cache or TTLCache()
        self.storefronts = storefronts or self.STOREFRONTS

    def aggregate(self, track_id) -> AggregatedRating:
        agg_key = self.AGGREGATE_KEY.format(track_id=track_id)
        cached = self._read_aggregate(agg_key)
        if cached is not None:
            logger.info(f"[Aggregation] Cache HIT for {track_id}")
            return cached

        total = 0
        weighted_sum = 0.0
        used = []
        history = []
        processed = 0

        for region in self.storefronts:
            if processed >= self.MAX_STOREFRONTS:
                logger.info(
                    f"[Aggregation] Early stop: max storefronts ({self.MAX_STOREFRONTS}) reached."
                )
                break

            if len(used) >= self.MIN_CONTRIBUTORS and len(history) >= self.EARLY_STOP_WINDOW:
                tail = sum(history[-self.EARLY_STOP_WINDOW:])
                ratio = tail / total if total > 0 else 0
                if ratio < self.EARLY_STOP_THRESHOLD:
                    logger.info(
                        f"[Aggregation] Early stop: last {self.EARLY_STOP_WINDOW} "
                        f"({', '.join(used[-self.EARLY_STOP_WINDOW:])}) contributed "
                        f"{ratio * 100:.1f}% of total."
                    )
                    break

            sample = self._regional_sample(track_id, region)
            if sample is None:
                continue

            processed += 1
            if sample.rating_count > 0:
                used.append(region)
                total += sample.rating_count
                weighted_sum += sample.average_rating * sample.rating_count
                history.append(sample.rating_count)
                logger.debug(
                    f"[Aggregation] +{region}: {sample.rating_count} ratings (total {total})"
                )

        result = AggregatedRating(
            total_estimated=total,
            weighted_average=weighted_sum / total if total > 0 else 0.0,
            regions_used=tuple(used),
        )
        logger.info(
            f"[Aggregation] Finished for {track_id}. Total: {total}, "
            f"avg: {result.weighted_average:.2f}, storefronts: {len(used)}"
        )
        if total == 0:
            # Outage or unrated app; either way let the next run try again.
            return result
        self.cache.set(
            agg_key,
            {
                "total_estimated": result.total_estimated,
                "weighted_average": result.weighted_average,
                "regions_used": list(result.regions_used),
            },
            get_setting("RELIABILITY_AGGREGATE_TTL"),
        )
        return result

    def _regional_sample(self, track_id, region: str) -> RegionalRatingSample | None:
        """Cached storefront sample, else a fresh lookup. None when unusable."""
        key = self.STOREFRONT_KEY.format(track_id=track_id, region=region)
        cached = self.cache.get(key)
        if cached is not None:
            try:
                return RegionalRatingSample(
                    region=region,
                    rating_count=int(cached["rating_count"]),
                    average_rating=float(cached["average_rating"]),
                )
            except (KeyError, TypeError, ValueError):
                logger.warning(f"[Aggregation] Ignoring malformed cache entry {key}")

        result = self.client.lookup_region(
            track_id, region, timeout=get_setting("RELIABILITY_REGION_TIMEOUT")
        )
        if not result.ok:
            logger.warning(
                f"[Aggregation] Failed to fetch {region} for {track_id}: "
                f"{result.error.kind} {result.error.message}"
            )
            return None
        if result.value is None:
            return None

        self.cache.set(
            key,
            {
                "rating_count": result.value.rating_count,
                "average_rating": result.value.average_rating,
            },
            get_setting("RELIABILITY_STOREFRONT_TTL"),
        )
        return result.value

    def _read_aggregate(self, key: str) -> AggregatedRating | None:
        cached = self.cache.get(key)
        if cached is None:
            return None
        try:
            return AggregatedRating(
                total_estimated=int(cached["total_estimated"]),
                weighted_average=float(cached["weighted_average"]),
                regions_used=tuple(cached["regions_used"]),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning(f"[Aggregation] Ignoring malformed cache entry {key}")
            return None


# --------------------------------------------------------------------------- #
# Download Estimator
# --------------------------------------------------------------------------- #


class DownloadEstimator:
    """
    Estimates lifetime installs from rating counts.

    Only a small share of installers ever rate an app, and that share
    depends on what the app is for: people rate a banking or health app far
    more rarely than a game. Installs are therefore

        rating_count * genre multiplier

    with App Store multipliers scaled down (iOS users leave relatively more
    ratings per install).

    Google Play additionally discloses an install tier ("1M+"). The estimate
    is kept inside the disclosed range: never below the badge, never at or
    above the next badge.
    """

    # Genre keyword -> ratings-to-installs multiplier (Google Play scale).
    # Matched as a case-insensitive substring of the genre, first match wins.
    BASE_MULTIPLIERS = [
        # Low stakes: entertainment / leisure
        ("Game", 150),
        ("Entertainment", 170),
        ("Social Networking", 190),
        ("Music & Audio", 190),
        ("Sports", 175),
        ("Photo & Video", 190),
        ("Lifestyle", 200),
        # Medium stakes: transactional / general
        ("Shopping", 175),
        ("Travel", 180),
        ("Food & Drink", 180),
        ("Education", 200),
        ("Reference", 200),
        ("Collaboration", 200),
        ("Graphics & Design", 200),
        # High stakes: professional / business
        ("Communication", 200),
        ("Productivity", 215),
        ("Business", 220),
        ("Developer Tools", 230),
        ("Jobs & Recruitment", 220),
        ("Maps & Navigation", 195),
        ("AI", 230),
        ("CRM", 240),
        ("Real Estate", 220),
        # Very high stakes: financial / safety-critical
        ("Utilities", 195),
        ("Finance", 230),
        ("News", 195),
        ("Crypto & Web3", 245),
        ("Medical", 265),
        ("Health", 285),
    ]

    STORE_SCALE = {GOOGLE_PLAY: 1.0, APP_STORE: 0.75}
    DEFAULT_MULTIPLIER = {GOOGLE_PLAY: 55, APP_STORE: 38}

    # Google Play install badges, ascending.
    GOOGLE_PLAY_TIERS = [
        100,
        500,
        1_000,
        5_000,
        10_000,
        50_000,
        100_000,
        500_000,
        1_000_000,
        5_000_000,
        10_000_000,
        50_000_000,
        100_000_000,
        500_000_000,
        1_000_000_000,
    ]

    # Distance kept below the next badge when clamping down.
    TIER_MARGIN = 1_000

    def multiplier(self, genre: str | None, platform: str = GOOGLE_PLAY) -> int:
        """Store-adjusted multiplier for a genre string."""
        if not genre:
            return self.DEFAULT_MULTIPLIER[platform]
        lower = str(genre).lower()
        for key, base in self.BASE_MULTIPLIERS:
            if key.lower() in lower:
                return _round_half_up(base * self.STORE_SCALE[platform])
        return self.DEFAULT_MULTIPLIER[platform]

    def next_tier(self, floor: int | None) -> float:
        """The first badge strictly above ``floor``; inf at the top or with no floor."""
        if not floor:
            return math.inf
        for tier in self.GOOGLE_PLAY_TIERS:
            if tier > floor:
                return tier
        return math.inf

    def clamp_to_tier(self, estimate: float, floor: int | None) -> float:
        """
        Keep an Android estimate inside its disclosed install range.

          estimate < floor        -> floor
          estimate near/past next -> next tier - 1,000 (not below floor)

        The result always lies in [floor, max(floor, next tier - 1,000)].
        """
        floor = floor or 0
        if estimate < floor:
            return floor
        upper = self.next_tier(floor)
        if upper == math.inf:
            return estimate
        return min(estimate, max(floor, upper - self.TIER_MARGIN))

    def estimate_platform(self, platform: str, rating_count: int, genre: str | None,
                          install_floor: int | None = None) -> DownloadEstimate:
        raw = max(rating_count or 0, 0) * self.multiplier(genre, platform)
        if platform == GOOGLE_PLAY:
            estimate = self.clamp_to_tier(raw, install_floor)
        else:
            estimate = raw
        return DownloadEstimate(
            platform=platform,
            estimated_installs=int(estimate),
            genre_used=genre or "N/A",
        )

    def calculate(self, android: dict | None, ios: dict | None,
                  category_hint: str | None = None) -> DownloadBreakdown:
        """
        Combine both stores into one install estimate.

        Args:
            android: {"ratings", "min_installs", "genre"} or None.
            ios: {"ratings", "genre"} or None.
            category_hint: Category supplied by the caller. Takes precedence
                over whatever genre the stores report.

        Returns:
            DownloadBreakdown with per-store and total installs and which
            genre drove the multipliers.
        """
        android = android or {}
        ios = ios or {}
        a_genre = android.get("genre") or ""
        i_genre = ios.get("genre") or ""

        if category_hint:
            genre, source, label = category_hint, "hint", category_hint
        elif a_genre and i_genre:
            genre, source, label = a_genre, "android", f"{a_genre}/{i_genre} (Store Fallback)"
        elif a_genre:
            genre, source, label = a_genre, "android", f"{a_genre} (Store Fallback)"
        elif i_genre:
            genre, source, label = i_genre, "ios", f"{i_genre} (Store Fallback)"
        else:
            genre, source, label = None, "default", "N/A"

        a_est = self.estimate_platform(
            GOOGLE_PLAY, android.get("ratings", 0), genre, android.get("min_installs")
        )
        i_est = self.estimate_platform(APP_STORE, ios.get("ratings", 0), genre)

        return DownloadBreakdown(
            android=a_est.estimated_installs,
            ios=i_est.estimated_installs,
            total=a_est.estimated_installs + i_est.estimated_installs,
            genre_used=label,
            genre_source=source,
        )


# --------------------------------------------------------------------------- #
# Growth Estimator
# --------------------------------------------------------------------------- #


def parse_timestamp(value) -> datetime | None:
    """Parse an ISO-8601 string (or datetime) into an aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    else:
        if not value or not isinstance(value, str):
            return None
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class GrowthEstimator:
    """
    Turns review timestamps into a weekly engagement trend.

    Reviews are binned into 7-day buckets starting at the earliest review
    of the trailing year, counts are log-compressed (ln(1 + c)) and a line
    is fitted through them. The slope, in log-count per week, says whether
    review activity is accelerating (> 0) or fading (< 0).

    The year is measured back from the newest review, not from today, so a
    dormant app is judged on its last active year instead of on silence.

    Returns None when no timestamp is usable; None means "no signal" and is
    not the same as a flat 0.0 trend.
    """

    WINDOW = timedelta(days=365)
    BIN = timedelta(days=7)

    def __init__(self, recency_weighted: bool = False):
        self.recency_weighted = recency_weighted

    def weekly_counts(self, timestamps) -> list[int]:
        """Zero-filled review counts per 7-day bin (empty if nothing parses)."""
        dates = sorted(d for d in (parse_timestamp(t) for t in timestamps or []) if d)
        if not dates:
            return []

        cutoff = dates[-1] - self.WINDOW
        dates = [d for d in dates if d >= cutoff]
        start = dates[0]

        counts = [0] * (int((dates[-1] - start) / self.BIN) + 1)
        for d in dates:
            counts[int((d - start) / self.BIN)] += 1
        return counts

    def slope(self, timestamps, app_name: str = "") -> float | None:
        counts = self.weekly_counts(timestamps)
        if not counts:
            logger.info(f"[Growth] {app_name or 'app'}: no usable reviews, slope N/A")
            return None

        x = list(range(len(counts)))
        y = [math.log1p(c) for c in counts]
        if self.recency_weighted:
            weights = [math.sqrt(i + 1) for i in x]
        else:
            weights = [1.0] * len(x)

        result = self._weighted_slope(x, y, weights)
        logger.info(
            f"[Growth] {app_name or 'app'}: reviews used {sum(counts)}, "
            f"weeks {len(counts)}, slope {result:.5f}"
        )
        return result

    @staticmethod
    def _weighted_slope(x: list[float], y: list[float], w: list[float]) -> float:
        """Weighted least-squares slope; 0.0 for fewer than 2 points or no spread."""
        if len(x) < 2:
            return 0.0
        w_sum = sum(w)
        x_mean = sum(wi * xi for wi, xi in zip(w, x)) / w_sum
        y_mean = sum(wi * yi for wi, yi in zip(w, y)) / w_sum
        sxx = sum(wi * (xi - x_mean) ** 2 for wi, xi in zip(w, x))
        if sxx <= 0:
            return 0.0
        sxy = sum(wi * (xi - x_mean) * (yi - y_mean) for wi, xi, yi in zip(w, x, y))
        result = sxy / sxx
        return result if math.isfinite(result) else 0.0


# --------------------------------------------------------------------------- #
# Reliability Scorer
# --------------------------------------------------------------------------- #


class ReliabilityScorer:
    """
    Combines installs and growth into a 2-10 reliability score.

    Steps:
      1. Installs -> downloads subscore (1-5), piecewise linear.
      2. Growth slope -> growth subscore (1-5), piecewise linear.
      3. Matrix score (0-5): bilinear interpolation over SCORE_TABLE.
         Without a growth signal the downloads subscore is used directly.
      4. Final = 2 + matrix * 1.6, snapped to the nearest 0.5.

    Grades: >= 9.0 Elite, >= 7.5 High, >= 5.0 Medium, else Low.
    """

    # (installs, subscore)
    DOWNLOAD_POINTS = [
        (0, 1.0),
        (50_000, 2.0),
        (200_000, 3.0),
        (1_000_000, 4.0),
        (5_000_000, 5.0),
    ]

    # (weekly log-count slope, subscore)
    GROWTH_POINTS = [
        (-0.03, 1.0),
        (-0.01, 2.0),
        (0.01, 3.0),
        (0.03, 4.0),
        (0.06, 5.0),
    ]

    # SCORE_TABLE[downloads][growth], both 1-5.
    SCORE_TABLE = {
        1: {1: 0.0, 2: 0.5, 3: 1.0, 4: 2.0, 5: 3.5},
        2: {1: 0.5, 2: 1.0, 3: 2.0, 4: 3.5, 5: 4.5},
        3: {1: 1.0, 2: 2.0, 3: 3.5, 4: 4.5, 5: 5.0},
        4: {1: 2.5, 2: 3.5, 3: 4.5, 4: 5.0, 5: 5.0},
        5: {1: 3.5, 2: 4.0, 3: 4.5, 4: 5.0, 5: 5.0},
    }

    GRADES = [(9.0, "Elite"), (7.5, "High"), (5.0, "Medium")]

    def downloads_subscore(self, total_downloads) -> float:
        try:
            d = float(total_downloads or 0)
        except (TypeError, ValueError):
            d = 0.0
        if not math.isfinite(d):
            d = 0.0
        return _interpolate(self.DOWNLOAD_POINTS, max(d, 0.0))

    def growth_subscore(self, slope: float) -> float:
        return _interpolate(self.GROWTH_POINTS, slope)

    def matrix_score(self, downloads: float, growth: float) -> float:
        """Bilinear interpolation of SCORE_TABLE at (downloads, growth)."""
        downloads = max(1.0, min(5.0, downloads))
        growth = max(1.0, min(5.0, growth))

        d1, d2 = math.floor(downloads), math.ceil(downloads)
        g1, g2 = math.floor(growth), math.ceil(growth)
        xd = downloads - d1
        yg = growth - g1

        t = self.SCORE_TABLE
        bottom = t[d1][g1] * (1 - xd) + t[d2][g1] * xd
        top = t[d1][g2] * (1 - xd) + t[d2][g2] * xd
        return bottom * (1 - yg) + top * yg

    def grade(self, score: float) -> str:
        for threshold, grade in self.GRADES:
            if score >= threshold:
                return grade
        return "Low"

    def score(self, total_downloads, slope: float | None, app_name: str = "") -> ScoreCard:
        d_score = self.downloads_subscore(total_downloads)

        if slope is None or not math.isfinite(slope):
            g_score = None
            matrix = d_score
        else:
            g_score = self.growth_subscore(slope)
            matrix = self.matrix_score(d_score, g_score)

        mapped = 2 + matrix * 1.6
        final = math.floor(mapped * 2 + 0.5) / 2
        grade = self.grade(final)

        logger.info(
            f"[Reliability] {app_name or 'app'}: downloads {total_downloads} "
            f"(subscore {d_score:.2f}), slope "
            f"{'N/A' if g_score is None else f'{slope:.5f}'} "
            f"(subscore {'N/A' if g_score is None else f'{g_score:.2f}'}), "
            f"matrix {matrix:.2f} -> {final} {grade}"
        )
        return ScoreCard(
            score=final,
            grade=grade,
            downloads_subscore=d_score,
            growth_subscore=g_score,
            matrix_score=matrix,
        )

    @staticmethod
    def adoption_label(downloads_subscore: float) -> str:
        s = _round_half_up(downloads_subscore)
        if s >= 5:
            return "Mass market"
        if s == 4:
            return "Widely used"
        if s == 3:
            return "Solid user base"
        if s == 2:
            return "Niche"
        return "Early-stage"

    @staticmethod
    def growth_label(growth_subscore: float | None) -> str:
        if growth_subscore is None:
            return "N/A"
        s = _round_half_up(growth_subscore)
        if s >= 5:
            return "Explosive"
        if s == 4:
            return "Accelerating"
        if s == 3:
            return "Rising"
        if s == 2:
            return "Flat"
        return "Declining"

"""
Records passed between the store clients, the identity resolver and the
scoring services.

Every store listing, no matter which store it comes from, is converted into
a Candidate before it is scored.
"""

from dataclasses import asdict, dataclass, field, replace
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

APP_STORE = "ios"
GOOGLE_PLAY = "android"


@dataclass(frozen=True)
class Query:
    """What we know about the app we are looking for."""
    name: str
    category: Optional[str] = None
    tagline: Optional[str] = None
    developer_hint: Optional[str] = None


@dataclass(frozen=True)
class Candidate:
    """One store listing under evaluation."""
    id: str
    title: str
    platform: str               # APP_STORE or GOOGLE_PLAY
    category: str = ""
    description: str = ""
    developer: str = ""
    rating_count: int = 0
    average_rating: float = 0.0
    install_floor: Optional[int] = None     # Google Play badge only
    review_timestamps: tuple = ()
    url: str = ""

    def with_rating_count(self, rating_count: int) -> "Candidate":
        """Return a copy carrying a different rating count."""
        return replace(self, rating_count=rating_count)


@dataclass(frozen=True)
class MatchScore:
    category_score: float = 0.0
    description_score: float = 0.0
    developer_score: float = 0.0

    @property
    def composite(self) -> float:
        return (
            self.category_score * 3.0
            + self.description_score
            + self.developer_score * 2.0
        )


@dataclass(frozen=True)
class ResolvedIdentity:
    candidate: Candidate
    match: MatchScore

    @property
    def platform(self) -> str:
        return self.candidate.platform

    @property
    def id(self) -> str:
        return self.candidate.id


@dataclass(frozen=True)
class NotFound:
    """Explicit absence of a match. Falsy so callers can branch on it."""
    platform: Optional[str] = None
    reason: str = "not found"

    def __bool__(self):
        return False

    def to_dict(self) -> dict:
        return {"error": "not_found", "platform": self.platform, "reason": self.reason}


@dataclass(frozen=True)
class RegionalRatingSample:
    region: str
    rating_count: int
    average_rating: float


@dataclass(frozen=True)
class AggregatedRating:
    total_estimated: int
    weighted_average: float
    regions_used: tuple = ()


@dataclass(frozen=True)
class DownloadEstimate:
    platform: str
    estimated_installs: int
    genre_used: str


@dataclass(frozen=True)
class DownloadBreakdown:
    android: int
    ios: int
    total: int
    genre_used: str
    genre_source: str           # "hint", "android", "ios" or "default"


@dataclass(frozen=True)
class ScoreCard:
    score: float
    grade: str
    downloads_subscore: float
    growth_subscore: Optional[float]
    matrix_score: float


# --------------------------------------------------------------------------- #
# Fetch results
# --------------------------------------------------------------------------- #


@dataclass(frozen=True)
class FetchError:
    kind: str                   # timeout, http, not_found, malformed, network
    message: str = ""


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """Either a value or a FetchError; never both."""
    value: Optional[T] = None
    error: Optional[FetchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "FetchResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: str, message: str = "") -> "FetchResult[T]":
        return cls(error=FetchError(kind=kind, message=message))


# --------------------------------------------------------------------------- #
# Report
# --------------------------------------------------------------------------- #


@dataclass
class ReliabilityReport:
    """Score card plus the metrics it was computed from."""
    app_name: str
    card: ScoreCard
    downloads: DownloadBreakdown
    growth_slope: Optional[float]
    growth_source: Optional[str] = None
    identities: dict = field(default_factory=dict)      # platform -> ResolvedIdentity
    aggregated_rating: Optional[AggregatedRating] = None
    missing_platforms: tuple = ()
    adoption_label: str = ""
    growth_label: str = ""

    @property
    def partial(self) -> bool:
        return bool(self.missing_platforms)

    def to_dict(self) -> dict:
        identities = {}
        for platform, identity in self.identities.items():
            c = identity.candidate
            identities[platform] = {
                "id": c.id,
                "title": c.title,
                "category": c.category,
                "developer": c.developer,
                "rating_count": c.rating_count,
                "install_floor": c.install_floor,
                "url": c.url,
                "match_score": round(identity.match.composite, 3),
            }
        return {
            "app_name": self.app_name,
            "score": self.card.score,
            "grade": self.card.grade,
            "downloads_subscore": round(self.card.downloads_subscore, 3),
            "growth_subscore": (
                round(self.card.growth_subscore, 3)
                if self.card.growth_subscore is not None
                else None
            ),
            "matrix_score": round(self.card.matrix_score, 3),
            "adoption_label": self.adoption_label,
            "growth_label": self.growth_label,
            "downloads": asdict(self.downloads),
            "growth_slope": self.growth_slope,
            "growth_source": self.growth_source,
            "aggregated_rating": (
                asdict(self.aggregated_rating) if self.aggregated_rating else None
            ),
            "identities": identities,
            "partial": self.partial,
            "missing_platforms": list(self.missing_platforms),
        }

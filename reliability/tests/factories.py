"""Builders shared by the reliability test modules."""

from datetime import datetime, timedelta, timezone

from reliability.domain import (
    APP_STORE,
    GOOGLE_PLAY,
    Candidate,
    DownloadBreakdown,
    MatchScore,
    ReliabilityReport,
    ResolvedIdentity,
    ScoreCard,
)

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

LOCMEM_CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "reliability-tests",
    }
}


def days_ago(*days) -> list[str]:
    """ISO timestamps ``days`` before NOW, in the order given."""
    return [(NOW - timedelta(days=d)).isoformat() for d in days]


def ios_candidate(id="1001", title="Ledgerly", **kwargs) -> Candidate:
    kwargs.setdefault("category", "Finance")
    kwargs.setdefault("developer", "Ledgerly Inc")
    return Candidate(id=id, title=title, platform=APP_STORE, **kwargs)


def android_candidate(id="com.ledgerly.app", title="Ledgerly", **kwargs) -> Candidate:
    kwargs.setdefault("category", "Finance")
    kwargs.setdefault("developer", "Ledgerly Inc.")
    return Candidate(id=id, title=title, platform=GOOGLE_PLAY, **kwargs)


def report(**kwargs) -> ReliabilityReport:
    defaults = dict(
        app_name="Ledgerly",
        card=ScoreCard(
            score=8.5,
            grade="High",
            downloads_subscore=4.0,
            growth_subscore=None,
            matrix_score=4.0,
        ),
        downloads=DownloadBreakdown(
            android=1_000_000,
            ios=0,
            total=1_000_000,
            genre_used="Finance",
            genre_source="hint",
        ),
        growth_slope=None,
        identities={
            GOOGLE_PLAY: ResolvedIdentity(
                candidate=android_candidate(rating_count=100, install_floor=1_000_000),
                match=MatchScore(category_score=1.0, developer_score=1.0),
            )
        },
        missing_platforms=(APP_STORE,),
        adoption_label="Widely used",
        growth_label="N/A",
    )
    defaults.update(kwargs)
    return ReliabilityReport(**defaults)

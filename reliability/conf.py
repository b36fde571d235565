"""
App-level settings with defaults.

Any value can be overridden in ``core/settings.py`` (or through the
environment variables that file reads).
"""

from django.conf import settings

DAY = 24 * 60 * 60

DEFAULTS = {
    "RELIABILITY_CACHE_ALIAS": "default",
    # Seconds. Storefront counts change slowly; the aggregate is kept
    # shorter so changes to the aggregation policy roll out within a week.
    "RELIABILITY_STOREFRONT_TTL": 30 * DAY,
    "RELIABILITY_AGGREGATE_TTL": 7 * DAY,
    "RELIABILITY_SCORE_TTL": 1 * DAY,
    "RELIABILITY_REGION_TIMEOUT": 3,
    "RELIABILITY_REQUEST_TIMEOUT": 15,
    "RELIABILITY_SEARCH_LIMIT": 5,
    "RELIABILITY_COUNTRY": "us",
    "RELIABILITY_LANG": "en",
}


def get_setting(name):
    """Return a project setting, falling back to the app default."""
    return getattr(settings, name, DEFAULTS[name])

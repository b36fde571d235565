"""
Identity resolution: pick the store listing that is really the app we were
asked about.

Store search is fuzzy and frequently returns look-alikes ("Orbit" finds
five different Orbits), so every candidate that survives the name filter is
scored on three signals:

  1. Category compatibility (x3.0) - the directory's category mapped onto
     the store's taxonomy. Dominates the ranking.
  2. Developer similarity (x2.0) - strong secondary signal, usually the
     developer found on the other platform.
  3. Description similarity (x1.0) - tagline words found in the store
     description. Tiebreaker.

A winner needs a positive composite; "no evidence at all" is not a match.
"""

import logging
import re

from .domain import APP_STORE, Candidate, MatchScore, NotFound, Query, ResolvedIdentity

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
# Name matching
# --------------------------------------------------------------------------- #

_DELIMITERS = re.compile(r"\s*[:\-—–|]\s+")
_LETTER = re.compile(r"[a-z]")


def _starts_at_boundary(text: str, prefix: str) -> bool:
    """True if ``text`` starts with ``prefix`` and the next char is not a letter."""
    if not text.startswith(prefix):
        return False
    return len(text) == len(prefix) or not _LETTER.match(text[len(prefix)])


def is_name_match(searched: str, actual: str) -> bool:
    """
    Robust fuzzy equality between the name we search for and a store title.

    Matches (after lowercasing and trimming):
      - exact equality
      - "Binance" vs "Binance.US" (prefix followed by a non-letter)
      - "Notion" vs "Notion - notes, docs, tasks" (shared delimited segment,
        in either direction)
      - "Binance" vs "Binance.US: Buy Bitcoin" (first title segment starts
        with the name at a boundary)
    """
    if not searched or not actual:
        return False

    s = searched.lower().strip()
    a = actual.lower().strip()
    if not s or not a:
        return False

    if s == a:
        return True

    if _starts_at_boundary(a, s):
        return True

    s_parts = [p.strip() for p in _DELIMITERS.split(s)]
    a_parts = [p.strip() for p in _DELIMITERS.split(a)]

    if s_parts[0] in a_parts or a_parts[0] in s_parts:
        return True

    return _starts_at_boundary(a_parts[0], s)


# --------------------------------------------------------------------------- #
# Category compatibility
# --------------------------------------------------------------------------- #

# Directory category -> allowed App Store / Google Play categories.
CATEGORY_MAP = {
    "ai": {"ios": ["developer tools", "productivity"], "android": ["tools", "productivity"]},
    "business": {"ios": ["business"], "android": ["business"]},
    "collaboration": {"ios": ["productivity"], "android": ["productivity", "communication"]},
    "communication": {"ios": ["social networking"], "android": ["communication"]},
    "crm": {"ios": ["business"], "android": ["business"]},
    "crypto & web3": {"ios": ["finance"], "android": ["finance"]},
    "developer tools": {"ios": ["developer tools"], "android": ["tools"]},
    "education": {"ios": ["education"], "android": ["education", "libraries & demo"]},
    "entertainment": {"ios": ["entertainment"], "android": ["entertainment", "events"]},
    "finance": {"ios": ["finance"], "android": ["finance"]},
    "food & drink": {"ios": ["food & drink"], "android": ["food & drink"]},
    "graphics & design": {"ios": ["graphics & design"], "android": ["art & design"]},
    "health & fitness": {"ios": ["health & fitness"], "android": ["health & fitness"]},
    "jobs & recruitment": {"ios": ["business"], "android": ["business"]},
    "lifestyle": {
        "ios": ["lifestyle"],
        "android": ["lifestyle", "beauty", "dating", "parenting", "personalization"],
    },
    "medical": {"ios": ["medical"], "android": ["medical"]},
    "music & audio": {"ios": ["music"], "android": ["music & audio"]},
    "maps & navigation": {"ios": ["navigation"], "android": ["maps & navigation"]},
    "news": {"ios": ["news", "magazines & newspapers"], "android": ["news & magazines", "comics"]},
    "photo & video": {"ios": ["photo & video"], "android": ["photography", "video players & editors"]},
    "productivity": {"ios": ["productivity"], "android": ["productivity"]},
    "real estate": {"ios": ["business"], "android": ["house & home"]},
    "reference": {"ios": ["reference", "books"], "android": ["books & reference"]},
    "shopping": {"ios": ["shopping"], "android": ["shopping"]},
    "social networking": {"ios": ["social networking"], "android": ["social"]},
    "sports": {"ios": ["sports"], "android": ["sports"]},
    "travel & transportation": {"ios": ["travel"], "android": ["travel & local", "auto & vehicles"]},
    "utilities": {"ios": ["utilities", "weather"], "android": ["tools", "weather"]},
}

_CATEGORY_TOKEN_SPLIT = re.compile(r"[\s,&/]+")


def is_category_match(query_category: str | None, store_category: str | None,
                      platform: str) -> bool:
    """
    Check a store category against the directory category.

    No directory category means nothing to check. A directory category with
    no store category cannot be confirmed and is rejected.
    """
    if not query_category:
        return True
    if not store_category:
        return False

    key = query_category.lower().strip()
    value = store_category.lower().strip()

    mapping = CATEGORY_MAP.get(key)
    if mapping:
        for allowed in mapping.get(platform, []):
            if value == allowed or allowed in value or value in allowed:
                return True
        return False

    # Unmapped: shared 4-char prefix handles Finance/Financial, Game/Games
    q_words = [w for w in _CATEGORY_TOKEN_SPLIT.split(key) if len(w) >= 3]
    s_words = [w for w in _CATEGORY_TOKEN_SPLIT.split(value) if len(w) >= 3]
    for qw in q_words:
        for sw in s_words:
            n = min(len(qw), len(sw), 4)
            if qw[:n] == sw[:n]:
                return True
    return False


# --------------------------------------------------------------------------- #
# Description / developer similarity
# --------------------------------------------------------------------------- #

STOP_WORDS = {"the", "and", "for", "with", "your", "app", "best", "free", "new", "get", "all"}
SEARCH_STOP_WORDS = STOP_WORDS | {"powered", "based"}

_NON_WORD = re.compile(r"\W+")


def _tokens(text: str, stop_words=STOP_WORDS) -> list[str]:
    return [
        w for w in _NON_WORD.split(text.lower())
        if len(w) > 2 and w not in stop_words
    ]


def description_score(tagline: str | None, description: str | None) -> float:
    """Fraction of tagline words found in the store description (0-1)."""
    if not tagline or not description:
        return 0.0
    words = _tokens(tagline)
    if not words:
        return 0.0
    text = description.lower()
    matches = sum(1 for w in words if w in text)
    return matches / len(words)


def tagline_keywords(tagline: str | None, max_words: int = 4) -> str:
    """Key search terms of a tagline, used to widen a store search."""
    if not tagline:
        return ""
    return " ".join(_tokens(tagline, SEARCH_STOP_WORDS)[:max_words])


def developer_score(hint: str | None, developer: str | None) -> float:
    """
    1.0 for the same developer ("Google LLC" vs "Google"), 0.9 for a shared
    word ("Meta Platforms, Inc." vs "Meta Inc"), else 0.
    """
    if not hint or not developer:
        return 0.0

    s = hint.lower().strip()
    a = developer.lower().strip()
    if not s or not a:
        return 0.0

    if s == a or s in a or a in s:
        return 1.0

    s_words = [w for w in _NON_WORD.split(s) if len(w) > 2]
    a_words = {w for w in _NON_WORD.split(a) if len(w) > 2}
    if any(w in a_words for w in s_words):
        return 0.9
    return 0.0


# --------------------------------------------------------------------------- #
# Resolver
# --------------------------------------------------------------------------- #


class IdentityResolver:
    """
    Scores candidates against a Query and selects the best match.

    Args:
        require_category: drop candidates whose category is incompatible
            instead of scoring them 0 on that signal. The App Store search
            is precise enough that a category mismatch means a different
            app.
    """

    def __init__(self, require_category: bool = False):
        self.require_category = require_category

    def score(self, query: Query, candidate: Candidate) -> MatchScore:
        category_ok = is_category_match(query.category, candidate.category, candidate.platform)
        return MatchScore(
            category_score=1.0 if category_ok else 0.0,
            description_score=description_score(query.tagline, candidate.description),
            developer_score=developer_score(query.developer_hint, candidate.developer),
        )

    def rank(self, query: Query, candidates: list[Candidate]) -> list[ResolvedIdentity]:
        """
        Score every name-matching candidate, best first.

        The sort is stable, so equal composites keep the store's order.
        """
        scored = []
        for candidate in candidates:
            if not is_name_match(query.name, candidate.title):
                logger.debug(
                    f"{candidate.platform}: {candidate.id} '{candidate.title}' fails name match"
                )
                continue
            match = self.score(query, candidate)
            if self.require_category and not match.category_score:
                logger.debug(
                    f"{candidate.platform}: {candidate.id} skipped due to category mismatch "
                    f"('{query.category}' vs '{candidate.category}')"
                )
                continue
            logger.debug(
                f"{candidate.platform}: {candidate.id} cat={match.category_score} "
                f"desc={match.description_score:.2f} dev={match.developer_score:.2f} "
                f"-> {match.composite:.2f}"
            )
            scored.append(ResolvedIdentity(candidate=candidate, match=match))

        scored.sort(key=lambda r: r.match.composite, reverse=True)
        return scored

    def resolve(self, query: Query, candidates: list[Candidate],
                platform: str | None = None):
        """Return the best ResolvedIdentity, or NotFound."""
        if not candidates:
            return NotFound(platform, "no candidates")

        ranked = self.rank(query, candidates)
        if not ranked:
            return NotFound(platform, "no candidate matched the name")

        best = ranked[0]
        if best.match.composite <= 0:
            logger.info(
                f"{best.platform}: best candidate {best.id} has score "
                f"{best.match.composite:.2f}. Rejecting."
            )
            return NotFound(platform, "no positive match evidence")

        logger.info(
            f"{best.platform}: selected {best.id} '{best.candidate.title}' "
            f"(score {best.match.composite:.2f})"
        )
        return best


def resolver_for(platform: str) -> IdentityResolver:
    return IdentityResolver(require_category=(platform == APP_STORE))

"""Series title normalization and similarity scoring."""

from __future__ import annotations

import re

from rapidfuzz.distance import Levenshtein

from .config import MatchingConfig, get_matching_config
from .publishers import normalize_publisher

_LEADING_THE = re.compile(r"^the\s+", re.IGNORECASE)
_TRAILING_PARENTHETICAL = re.compile(r"\s*\([^)]*\)\s*$")
_VOLUME_MARKER = re.compile(r"\bvol(?:ume)?\.?\s*\d+\b", re.IGNORECASE)
_NON_ALPHANUMERIC = re.compile(r"[\W_]+")


def normalize_title(name: str | None) -> str:
    """Normalize a series name for identity comparison.

    Lowercases, strips a leading "The", trailing parenthetical annotations
    such as "(2011)" or "(Vol. 2)", and "Vol. N"/"Volume N" markers, then
    collapses punctuation and whitespace runs to single spaces.

    Examples:
        >>> normalize_title("The Batman (2011)")
        'batman'
        >>> normalize_title("Saga Vol. 2")
        'saga'
    """
    if not name:
        return ""
    text = name.lower().strip()
    text = _LEADING_THE.sub("", text)
    # Titles like "Batman (2016) (Digital)" carry several annotations
    previous = None
    while previous != text:
        previous = text
        text = _TRAILING_PARENTHETICAL.sub("", text)
    text = _VOLUME_MARKER.sub(" ", text)
    text = _NON_ALPHANUMERIC.sub(" ", text)
    return " ".join(text.split())


def tiered_similarity(
    norm_a: str,
    norm_b: str,
    config: MatchingConfig | None = None,
) -> float:
    """Score two already-normalized strings.

    Exact match scores 1.0, containment in either direction 0.85, otherwise
    the share of words in common relative to the longer word list.
    """
    if not norm_a or not norm_b:
        return 0.0
    config = config or get_matching_config()
    if norm_a == norm_b:
        return config.title_exact_score
    if norm_a in norm_b or norm_b in norm_a:
        return config.title_substring_score

    words_a = set(norm_a.split())
    words_b = set(norm_b.split())
    shared = words_a & words_b
    return len(shared) / max(len(words_a), len(words_b))


def title_similarity(a: str | None, b: str | None) -> float:
    """Similarity of two raw series names in [0, 1]."""
    return tiered_similarity(normalize_title(a), normalize_title(b))


def fuzzy_title_similarity(a: str | None, b: str | None) -> float:
    """Graded similarity used when comparing records across sources.

    Containment is scaled by relative length (0.7 to 1.0) and other pairs
    take the better of word overlap and normalized edit distance, so near
    spellings like "Spiderman" and "Spider-Man" still score well.
    """
    norm_a = normalize_title(a)
    norm_b = normalize_title(b)
    if norm_a == norm_b:
        return 1.0
    if not norm_a or not norm_b:
        return 0.0

    if norm_a in norm_b or norm_b in norm_a:
        length_ratio = min(len(norm_a), len(norm_b)) / max(len(norm_a), len(norm_b))
        return 0.7 + 0.3 * length_ratio

    tokens_a = norm_a.split()
    tokens_b = norm_b.split()
    matching = sum(1 for token in tokens_a if token in tokens_b)
    token_score = matching / max(len(tokens_a), len(tokens_b))
    edit_score = Levenshtein.normalized_similarity(norm_a, norm_b)
    return max(token_score, edit_score)


def series_identity_key(name: str | None, publisher: str | None = None) -> str:
    """Build the deduplication key ``normalized name|normalized publisher``.

    The publisher half goes through the canonical publisher table first, so
    "DC" and "DC Comics" produce the same key.
    """
    publisher_key = normalize_title(normalize_publisher(publisher)) if publisher else ""
    return f"{normalize_title(name)}|{publisher_key}"


def name_only_key(name: str | None) -> str:
    """Identity key with an empty publisher half, used as a lookup fallback."""
    return f"{normalize_title(name)}|"

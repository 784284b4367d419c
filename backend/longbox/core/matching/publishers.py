"""Publisher name canonicalization and imprint relationships."""

from __future__ import annotations

PUBLISHER_NORMALIZATIONS: dict[str, str] = {
    "dc": "dc comics",
    "dc comics": "dc comics",
    "dc comics, inc.": "dc comics",
    "marvel": "marvel comics",
    "marvel comics": "marvel comics",
    "marvel comics group": "marvel comics",
    "image": "image comics",
    "image comics": "image comics",
    "dark horse": "dark horse comics",
    "dark horse comics": "dark horse comics",
    "idw": "idw publishing",
    "idw publishing": "idw publishing",
    "boom": "boom! studios",
    "boom!": "boom! studios",
    "boom! studios": "boom! studios",
    "boom studios": "boom! studios",
    "dynamite": "dynamite entertainment",
    "dynamite entertainment": "dynamite entertainment",
    "valiant": "valiant entertainment",
    "valiant entertainment": "valiant entertainment",
    "oni": "oni press",
    "oni press": "oni press",
}

# Parent publisher -> imprint name fragments
PUBLISHER_IMPRINTS: dict[str, list[str]] = {
    "dc": ["vertigo", "black label", "wildstorm", "milestone", "dc black label"],
    "marvel": ["max", "icon", "epic", "ultimate", "marvel knights"],
    "image": ["top cow", "skybound", "shadowline"],
    "dark horse": ["berger books", "dark horse originals"],
}


def normalize_publisher(publisher: str | None) -> str:
    """Map a publisher name to its canonical lowercase form.

    Unknown publishers pass through lowercased and trimmed.
    """
    if not publisher:
        return ""
    lower = publisher.lower().strip()
    return PUBLISHER_NORMALIZATIONS.get(lower, lower)


def publishers_match(a: str | None, b: str | None) -> bool:
    """True when both publishers are present and canonicalize to the same name."""
    if not a or not b:
        return False
    return normalize_publisher(a) == normalize_publisher(b)


def is_known_imprint(entry_publisher: str | None, query_publisher: str | None) -> bool:
    """True when ``entry_publisher`` is a known imprint of ``query_publisher``.

    Both arguments are compared loosely: the parent matches when the query
    contains its key ("DC Comics" contains "dc"), and the imprint matches
    when the entry contains one of the parent's imprint fragments.
    """
    if not entry_publisher or not query_publisher:
        return False
    entry = " ".join(entry_publisher.lower().replace("-", " ").split())
    query = " ".join(query_publisher.lower().replace("-", " ").split())

    for parent, imprints in PUBLISHER_IMPRINTS.items():
        if parent not in query:
            continue
        if any(imprint in entry for imprint in imprints):
            return True
    return False

"""
Name normalization and string similarity.

``vendor_similarity`` is used against the vendor directory and credits
containment ("netflix" inside "netflix premium"). Subscription de-duplication
uses the plain ``edit_similarity`` on normalized names.
"""

import re

_CORPORATE_SUFFIX = re.compile(r"(?:\s+(?:inc|llc|ltd|corp|co)\.?)+$")
_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_name(name: str | None) -> str:
    """Lowercase, strip corporate suffixes, turn punctuation into spaces and collapse."""
    if not name:
        return ""
    value = name.lower().strip()
    # Commas before suffixes ("Acme, Inc.") would block the suffix match
    value = value.replace(",", " ")
    value = _WHITESPACE.sub(" ", value)
    value = _CORPORATE_SUFFIX.sub("", value)
    value = _NON_WORD.sub(" ", value)
    return _WHITESPACE.sub(" ", value).strip()


def levenshtein_distance(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def edit_similarity(a: str | None, b: str | None) -> float:
    """1 - distance / longer length, after case-folding and trimming."""
    a = (a or "").strip().lower()
    b = (b or "").strip().lower()
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / max(len(a), len(b))


def vendor_similarity(a: str | None, b: str | None) -> float:
    a = (a or "").strip().lower()
    b = (b or "").strip().lower()
    if not a or not b:
        return 1.0 if a == b else 0.0
    if a == b:
        return 1.0
    if a in b or b in a:
        shorter, longer = sorted((len(a), len(b)))
        return shorter / longer
    return edit_similarity(a, b)


def service_name_similarity(a: str | None, b: str | None) -> float:
    """Similarity of two subscription names, compared in normalized form."""
    return edit_similarity(normalize_name(a), normalize_name(b))

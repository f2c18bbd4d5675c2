"""
Description similarity for fuzzy duplicate detection.

Jaccard index over sets of 2-character substrings of the lower-cased,
alphanumeric-only description.
"""

import re

_NON_ALNUM = re.compile(r"[^0-9a-zčćđšž]+")


def normalize_description(text: str | None) -> str:
    if not text:
        return ""
    return _NON_ALNUM.sub("", text.lower())


def bigrams(text: str | None) -> set[str]:
    """A one-character string is its own only bigram; empty gives the empty set."""
    norm = normalize_description(text)
    if len(norm) < 2:
        return {norm} if norm else set()
    return {norm[i:i + 2] for i in range(len(norm) - 1)}


def bigram_similarity(a: str | None, b: str | None) -> float:
    """Jaccard similarity in [0, 1]. Two empty descriptions score 0.0."""
    grams_a = bigrams(a)
    grams_b = bigrams(b)
    if not grams_a and not grams_b:
        return 0.0
    union = grams_a | grams_b
    return len(grams_a & grams_b) / len(union)

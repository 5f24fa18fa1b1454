"""
Text primitives shared by the normalizer and the answer classifier.

All lexical matching in the engine runs on ``normalize_text`` output:
lower-cased, diacritics stripped, whitespace collapsed.
"""

import math
import re
import unicodedata

_WHITESPACE = re.compile(r"\s+")
_TOKEN = re.compile(r"[a-z0-9]+(?:'[a-z]+)?")
_TRAILING_PUNCTUATION = re.compile(r"[\s.,;:!?…]+$")


def strip_diacritics(text: str) -> str:
    """Remove combining marks (``ü`` → ``u``) and fold ``ß`` to ``ss``."""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.replace("ß", "ss")


def normalize_text(text: str | None) -> str:
    """Lower-case, strip diacritics and collapse whitespace."""
    if not text:
        return ""
    folded = strip_diacritics(text.lower())
    return _WHITESPACE.sub(" ", folded).strip()


def trim_trailing_punctuation(text: str) -> str:
    """Drop trailing punctuation and whitespace (``"nein!"`` → ``"nein"``)."""
    return _TRAILING_PUNCTUATION.sub("", text)


def tokenize(normalized_text: str) -> list[str]:
    """Split already-normalized text into word tokens."""
    return _TOKEN.findall(normalized_text)


def contains_any(normalized_text: str, phrases) -> bool:
    """True if any phrase occurs as a substring."""
    return any(phrase in normalized_text for phrase in phrases)


def levenshtein_distance(a: str, b: str) -> int:
    """
    Edit distance (insertions, deletions, substitutions) between two strings.

    Classic two-row dynamic programme, O(len(a) * len(b)).
    """
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (char_a != char_b),
            ))
        previous = current
    return previous[-1]


def round_half_up(value: float, digits: int = 2) -> float:
    """Round like ``Math.round(value * 10**digits) / 10**digits``."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor

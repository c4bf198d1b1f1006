"""
Matching utilities: map free-text oracle output onto reference data.

The oracle answers with whatever spelling it likes ("english", "EN",
"```json ...```", "Fruits."). These pure functions normalize that text and
resolve it against the canonical language and category sets. Nothing here
touches the database.

Rules:
    Language  name (case-insensitive) → ISO code → English aliases
              ("english"/"en"). When several reference rows match, the
              lowest ``priority`` wins, then name.
    Category  exact case-insensitive name → fuzzy fallback with
              ``SequenceMatcher`` (ratio ≥ 0.85, best ratio wins).

Examples:
    >>> langs = [LanguageRef(1, "English", "en", 0), LanguageRef(2, "Spanish", "es", 1)]
    >>> match_language("EN", langs).name
    'English'
    >>> match_category("fruits.", ["Fruits", "Tools"])
    'Fruits'
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Iterable, Sequence

FUZZY_CATEGORY_THRESHOLD = 0.85

_ENGLISH_ALIASES = frozenset({"english", "en", "eng", "english language"})
_FENCE_OPEN = re.compile(r"^```[a-zA-Z]*\n?")
_FENCE_CLOSE = re.compile(r"```$")
_EDGE_NOISE = " \t\r\n\"'`.,;:!?"


@dataclass(frozen=True)
class LanguageRef:
    """A row of the language reference set."""

    id: int
    name: str
    code: str | None = None
    priority: int = 0


@dataclass(frozen=True)
class MatchOutcome:
    """What a raw oracle answer resolved to."""

    language: LanguageRef | None
    category: str | None

    @property
    def language_matched(self) -> bool:
        return self.language is not None

    @property
    def category_matched(self) -> bool:
        return self.category is not None


def strip_code_fences(text: str | None) -> str:
    """Remove a surrounding markdown code fence from an oracle response."""
    if not text:
        return ""
    text = text.strip()
    if text.startswith("```"):
        text = _FENCE_OPEN.sub("", text)
        text = _FENCE_CLOSE.sub("", text).strip()
    return text


def normalize(text: str | None) -> str:
    """Lowercase, collapse whitespace and trim quotes/punctuation."""
    if not text:
        return ""
    collapsed = " ".join(strip_code_fences(text).split())
    return collapsed.strip(_EDGE_NOISE).lower()


def _is_english(value: str) -> bool:
    return value in _ENGLISH_ALIASES


def _language_matches(detected: str, language: LanguageRef) -> bool:
    name = normalize(language.name)
    code = normalize(language.code)
    if detected == name:
        return True
    if code and detected == code:
        return True
    # "English" may be stored as a name or only as code "en"
    return _is_english(detected) and (_is_english(name) or code == "en")


def match_language(
    detected: str | None, languages: Iterable[LanguageRef]
) -> LanguageRef | None:
    """Resolve an oracle language answer to a reference language."""
    value = normalize(detected)
    if not value:
        return None
    candidates = [lang for lang in languages if _language_matches(value, lang)]
    if not candidates:
        return None
    return min(candidates, key=lambda lang: (lang.priority, lang.name))


def match_category(detected: str | None, categories: Sequence[str]) -> str | None:
    """Resolve an oracle category answer to a canonical category name.

    An empty answer means "no good match" and yields None.
    """
    value = normalize(detected)
    if not value:
        return None

    for name in categories:
        if normalize(name) == value:
            return name

    best: str | None = None
    best_ratio = 0.0
    for name in categories:
        ratio = SequenceMatcher(None, value, normalize(name)).ratio()
        if ratio >= FUZZY_CATEGORY_THRESHOLD and ratio > best_ratio:
            best, best_ratio = name, ratio
    return best


def match_classification(
    language: str | None,
    category: str | None,
    languages: Iterable[LanguageRef],
    categories: Sequence[str],
) -> MatchOutcome:
    """Match both halves of an oracle answer in one call."""
    return MatchOutcome(
        language=match_language(language, languages),
        category=match_category(category, categories),
    )


__all__ = [
    "FUZZY_CATEGORY_THRESHOLD",
    "LanguageRef",
    "MatchOutcome",
    "strip_code_fences",
    "normalize",
    "match_language",
    "match_category",
    "match_classification",
]

"""
Category lookup by keyword containment.

KeywordMatcher returns the first registered category (in registration
order) having any keyword that occurs in the request text. There is no
scoring; order alone breaks ties. Anything with a compatible find_match()
can stand in for it, e.g. a semantic classifier.
"""

import re
from typing import Optional, Protocol, runtime_checkable

from .types import CategoryEntry, Registry

_WORD_RE = re.compile(r"\w+")
_NON_WORD_RE = re.compile(r"[^\w\s]")
_SPACE_RE = re.compile(r"\s+")


@runtime_checkable
class CategoryMatcher(Protocol):
    """Finds the existing category a request belongs to, if any."""

    def find_match(
        self, title: str, description: str, registry: Registry,
    ) -> Optional[CategoryEntry]: ...


def normalize_text(title: str, description: str) -> str:
    return f"{title} {description}".lower()


class KeywordMatcher:
    """First-keyword-match-wins matcher."""

    def find_match(
        self, title: str, description: str, registry: Registry,
    ) -> Optional[CategoryEntry]:
        text = normalize_text(title, description)
        for entry in registry.categories.values():
            if any(kw and kw.lower() in text for kw in entry.keywords):
                return entry
        return None


def extract_keywords(
    title: str,
    description: str,
    *,
    limit: int = 5,
    min_length: int = 2,
) -> list[str]:
    """Distinct lowercase word tokens of the request, in order of appearance.

    Tokens shorter than min_length are dropped; at most `limit` are kept.
    """
    words = _WORD_RE.findall(normalize_text(title, description))
    keywords: list[str] = []
    for word in words:
        if len(word) >= min_length and word not in keywords:
            keywords.append(word)
            if len(keywords) >= limit:
                break
    return keywords


def category_key(title: str, *, max_length: int = 20) -> str:
    """Registry key for a title: lowercase, punctuation stripped, spaces to hyphens.

    >>> category_key("Calculator Pro!")
    'calculator-pro'
    """
    key = _NON_WORD_RE.sub("", title.lower().strip())
    key = _SPACE_RE.sub("-", key)
    return key[:max_length]

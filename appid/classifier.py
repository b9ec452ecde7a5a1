"""
Coarse keyword-table classification of request lines.

The tables are configuration (see ClassifierConfig); this module only does
the lookup.
"""

from typing import Optional

from .config import ClassifierConfig

KNOWN_CONFIDENCE = 0.8
UNKNOWN_CONFIDENCE = 0.3


def _first_label(text: str, table: dict[str, list[str]]) -> Optional[str]:
    folded = text.casefold()
    for label, keywords in table.items():
        if any(kw and kw.casefold() in folded for kw in keywords):
            return label
    return None


class KeywordClassifier:
    """Guesses an app type and priority for a line of free text."""

    def __init__(
        self,
        app_types: dict[str, list[str]],
        priorities: dict[str, list[str]],
        *,
        default_app_type: str = "unknown",
        default_priority: str = "medium",
    ):
        self.app_types = app_types
        self.priorities = priorities
        self.default_app_type = default_app_type
        self.default_priority = default_priority

    @classmethod
    def from_config(cls, config: Optional[ClassifierConfig] = None) -> "KeywordClassifier":
        config = config or ClassifierConfig()
        return cls(
            config.app_types,
            config.priorities,
            default_app_type=config.default_app_type,
            default_priority=config.default_priority,
        )

    def detected_app_type(self, text: str) -> str:
        return _first_label(text, self.app_types) or self.default_app_type

    def detected_priority(self, text: str) -> str:
        return _first_label(text, self.priorities) or self.default_priority

    def confidence(self, text: str) -> float:
        if _first_label(text, self.app_types) is None:
            return UNKNOWN_CONFIDENCE
        return KNOWN_CONFIDENCE

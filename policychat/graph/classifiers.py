"""
classifiers.py
--------------
Web-search outcome classifier: did a requested search produce usable results?

This is a heuristic over the reply text only. False positives and negatives are
expected. The rules are an ordered list passed in as data so they can be tuned
without touching the control flow; the first rule that fires decides.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence, Tuple

URL_PATTERN = re.compile(r"https?://[^\s<>\"'\[\]{}|\\^`]+", re.IGNORECASE)

SUCCESS_PHRASES: Tuple[str, ...] = (
    "according to",
    "search results",
    "based on my search",
    "based on the search",
    "i found",
    "recent reports",
    "reported that",
    "according to the latest",
)

FACTUAL_INDICATORS: Tuple[str, ...] = (
    "secretary",
    "director",
    "was appointed",
    "was named",
    "announced",
    "president",
    "commissioner",
    "administrator",
    "currently",
    "serves as",
)

NO_RESULT_PHRASES: Tuple[str, ...] = (
    "could not find",
    "couldn't find",
    "no results",
    "unable to find",
    "did not return",
    "didn't return",
    "no relevant results",
    "not able to find",
    "no information",
    "unable to access",
    "not configured",
)


def _contains_any(text: str, phrases: Sequence[str]) -> bool:
    lowered = text.lower()
    return any(p in lowered for p in phrases)


@dataclass(frozen=True)
class ContainsUrl:
    name: str = "contains_url"

    def check(self, text: str) -> bool:
        return URL_PATTERN.search(text) is not None


@dataclass(frozen=True)
class ContainsPhrase:
    phrases: Tuple[str, ...] = SUCCESS_PHRASES
    name: str = "success_phrase"

    def check(self, text: str) -> bool:
        return _contains_any(text, self.phrases)


@dataclass(frozen=True)
class FactualWithoutNegative:
    indicators: Tuple[str, ...] = FACTUAL_INDICATORS
    negatives: Tuple[str, ...] = NO_RESULT_PHRASES
    name: str = "factual_without_negative"

    def check(self, text: str) -> bool:
        return _contains_any(text, self.indicators) and not _contains_any(text, self.negatives)


DEFAULT_RULES = (ContainsUrl(), ContainsPhrase(), FactualWithoutNegative())


def classify_web_search(content: str, rules: Sequence = DEFAULT_RULES) -> bool:
    """
    Return True when `content` looks like it was built from real search results.
    """
    if not content or not content.strip():
        return False
    return any(rule.check(content) for rule in rules)

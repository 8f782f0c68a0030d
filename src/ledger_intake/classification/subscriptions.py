"""
Duplicate subscription matching.

Prevents re-adding a recurring expense that already exists in the ledger.
Both sides are normalized (lowercase, accents and punctuation removed,
whitespace collapsed), then matched; the first rule that hits wins:

1. EXACT: normalized strings are equal
2. CONTAINMENT: the shorter string is contained in the longer one and is at
   least containment_ratio of its length
3. ALIAS: both whole strings (less trailing billing words) resolve to the
   same group of the alias table

No match under any rule means the candidate is not a duplicate.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..config import DEFAULT_SUBSCRIPTION_ALIASES
from .noise import normalize_text

_PUNCTUATION = re.compile(r"[^\w\s]")

DEFAULT_CONTAINMENT_RATIO = 0.60

# Billing words that may trail an alias
BILLING_SUFFIXES = frozenset(
    {"assinatura", "mensal", "mensalidade", "anual", "plano", "premium", "br", "brasil", "bill", "com"}
)


class MatchRule(str, Enum):
    EXACT = "exact"
    CONTAINMENT = "containment"
    ALIAS = "alias"


@dataclass(frozen=True)
class SubscriptionMatch:
    """A candidate matched an existing recurring description."""

    rule: MatchRule
    existing: str


def normalize_description(value: str | None) -> str:
    """Normalize a description for subscription comparison."""
    text = _PUNCTUATION.sub("", normalize_text(value))
    return " ".join(text.split())


class SubscriptionMatcher:
    """Matches candidates against existing recurring descriptions.

    Stateless after construction; safe to share between threads.
    """

    def __init__(
        self,
        aliases: Optional[list[list[str]]] = None,
        containment_ratio: float = DEFAULT_CONTAINMENT_RATIO,
    ):
        self.containment_ratio = containment_ratio
        self._alias_groups: dict[str, int] = {}
        groups = DEFAULT_SUBSCRIPTION_ALIASES if aliases is None else aliases
        for index, group in enumerate(groups):
            for alias in group:
                normalized = normalize_description(alias)
                if normalized:
                    self._alias_groups.setdefault(normalized, index)

    def alias_group(self, normalized: str) -> Optional[int]:
        """
        Alias group of a normalized description, or None.

        The whole description must be an alias, optionally followed by
        billing words ("Netflix Assinatura Mensal"). A brand word inside an
        unrelated description ("Academia Max Fit") is not an alias.
        """
        tokens = normalized.split()
        while tokens:
            key = " ".join(tokens)
            if key in self._alias_groups:
                return self._alias_groups[key]
            if tokens[-1] not in BILLING_SUFFIXES:
                return None
            tokens.pop()
        return None

    def _contains(self, a: str, b: str) -> bool:
        shorter, longer = (a, b) if len(a) <= len(b) else (b, a)
        if not shorter or shorter not in longer:
            return False
        return len(shorter) >= self.containment_ratio * len(longer)

    def match(self, candidate: str, existing: Iterable[str]) -> Optional[SubscriptionMatch]:
        """
        Find the first existing description the candidate duplicates.

        Rules are applied in priority order across all existing descriptions:
        an exact match anywhere beats a containment match earlier in the list.
        """
        normalized_candidate = normalize_description(candidate)
        if not normalized_candidate:
            return None

        normalized_existing = [
            (normalize_description(description), description) for description in existing
        ]
        normalized_existing = [(norm, raw) for norm, raw in normalized_existing if norm]

        for norm, raw in normalized_existing:
            if norm == normalized_candidate:
                return SubscriptionMatch(MatchRule.EXACT, raw)

        for norm, raw in normalized_existing:
            if self._contains(normalized_candidate, norm):
                return SubscriptionMatch(MatchRule.CONTAINMENT, raw)

        candidate_group = self.alias_group(normalized_candidate)
        if candidate_group is not None:
            for norm, raw in normalized_existing:
                if self.alias_group(norm) == candidate_group:
                    return SubscriptionMatch(MatchRule.ALIAS, raw)

        return None


def match_subscription(
    candidate: str,
    existing: Iterable[str],
    aliases: Optional[list[list[str]]] = None,
    containment_ratio: float = DEFAULT_CONTAINMENT_RATIO,
) -> Optional[SubscriptionMatch]:
    """Convenience wrapper around SubscriptionMatcher.match()."""
    return SubscriptionMatcher(aliases, containment_ratio).match(candidate, existing)

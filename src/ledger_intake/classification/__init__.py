"""
Classification of extracted lines.

- noise: drops lines that are not real money movement
- subscriptions: detects recurring expenses already in the ledger
"""

from .noise import (
    KEEP,
    NoiseClassification,
    NoiseReason,
    classify_record,
    normalize_text,
)
from .subscriptions import (
    MatchRule,
    SubscriptionMatch,
    SubscriptionMatcher,
    match_subscription,
    normalize_description,
)

__all__ = [
    "KEEP",
    "NoiseClassification",
    "NoiseReason",
    "classify_record",
    "normalize_text",
    "MatchRule",
    "SubscriptionMatch",
    "SubscriptionMatcher",
    "match_subscription",
    "normalize_description",
]

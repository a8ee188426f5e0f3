"""Keyword-based sale detection and commission arithmetic.

Scoring is pure: the same text always yields the same score. The flag and
pending-sale policies read their thresholds from settings.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Literal, Optional, Union

from repchat.config import settings
from repchat.schemas.identity import SaleChannel

Confidence = Literal["high", "medium", "low"]

HIGH_CONFIDENCE_KEYWORDS = (
    "order confirmed",
    "payment received",
    "payment successful",
    "order placed",
    "purchase complete",
    "order number",
    "confirmation number",
    "shipped",
    "tracking number",
    "payment processed",
    "transaction complete",
    "receipt sent",
    "order is confirmed",
    "payment went through",
)

MEDIUM_CONFIDENCE_KEYWORDS = (
    "bought",
    "purchased",
    "paid",
    "checkout",
    "credit card",
    "debit card",
    "processed payment",
    "invoice",
    "billing",
    "charged",
    "transaction",
    "completed purchase",
    "finalized order",
    "payment method",
)

LOW_CONFIDENCE_KEYWORDS = (
    "order",
    "buy",
    "payment",
    "price",
    "cost",
    "purchase",
    "total",
    "amount",
    "discount",
    "promo code",
    "coupon",
)

TIERS: tuple[tuple[Confidence, tuple[str, ...]], ...] = (
    ("high", HIGH_CONFIDENCE_KEYWORDS),
    ("medium", MEDIUM_CONFIDENCE_KEYWORDS),
    ("low", LOW_CONFIDENCE_KEYWORDS),
)

COMMISSION_RATES: dict[str, Decimal] = {
    "website": Decimal("0.10"),
    "instagram": Decimal("0.05"),
}

CONTEXT_RADIUS = 50
CONTEXT_FALLBACK_LENGTH = 100

CENT = Decimal("0.01")


@dataclass(frozen=True)
class KeywordScore:
    keywords: list[str] = field(default_factory=list)
    confidence: Optional[Confidence] = None
    counts: dict[str, int] = field(default_factory=lambda: {"high": 0, "medium": 0, "low": 0})

    @property
    def has_sales_keywords(self) -> bool:
        return bool(self.keywords)


def score(text: Optional[str]) -> KeywordScore:
    """Case-insensitive substring match against every tier.

    Keywords are deduplicated, in tier order. Confidence is the highest tier
    with at least one hit.
    """
    haystack = (text or "").lower()
    keywords: list[str] = []
    counts = {"high": 0, "medium": 0, "low": 0}
    confidence: Optional[Confidence] = None

    for tier, tier_keywords in TIERS:
        for keyword in tier_keywords:
            if keyword in haystack:
                counts[tier] += 1
                if keyword not in keywords:
                    keywords.append(keyword)
        if counts[tier] and confidence is None:
            confidence = tier

    return KeywordScore(keywords=keywords, confidence=confidence, counts=counts)


def should_flag_potential_sale(result: KeywordScore) -> bool:
    if result.confidence == "high":
        return True
    if result.confidence == "medium":
        return result.counts["medium"] >= settings.sale_flag_medium_min
    if result.confidence == "low":
        return result.counts["low"] >= settings.sale_flag_low_min
    return False


def should_create_pending_sale(result: KeywordScore) -> bool:
    if result.confidence == "high":
        return result.counts["high"] >= settings.sale_pending_high_min
    if result.confidence == "medium":
        return result.counts["medium"] >= settings.sale_pending_medium_min
    return False


def extract_keyword_context(content: str, keyword: str, radius: int = CONTEXT_RADIUS) -> str:
    """Snippet around the first occurrence of keyword, with ellipses where truncated."""
    index = content.lower().find(keyword.lower())
    if index == -1:
        return content[:CONTEXT_FALLBACK_LENGTH]

    start = max(0, index - radius)
    end = min(len(content), index + len(keyword) + radius)
    snippet = content[start:end]
    if start > 0:
        snippet = "..." + snippet
    if end < len(content):
        snippet = snippet + "..."
    return snippet


def commission_rate(channel: SaleChannel) -> Decimal:
    if channel not in COMMISSION_RATES:
        raise ValueError(f"Unknown sale channel: {channel}")
    return COMMISSION_RATES[channel]


def round_money(amount: Union[Decimal, float, int, str]) -> Decimal:
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


def commission_for(amount: Union[Decimal, float, int, str], rate: Union[Decimal, str]) -> Decimal:
    return round_money(Decimal(str(amount)) * Decimal(str(rate)))


def calculate_commission(amount: Union[Decimal, float, int, str], channel: SaleChannel) -> tuple[Decimal, Decimal]:
    """Returns (rate, commission) for a sale amount on a channel."""
    rate = commission_rate(channel)
    return rate, commission_for(amount, rate)

from dental_quotes.models.base import Base
from dental_quotes.models.quote import (
    Currency,
    DiscountType,
    QuoteCounter,
    QuoteEventType,
    QuoteRecord,
    QuoteStatus,
    QuoteType,
)

__all__ = [
    "Base",
    "Currency",
    "DiscountType",
    "QuoteCounter",
    "QuoteEventType",
    "QuoteRecord",
    "QuoteStatus",
    "QuoteType",
]

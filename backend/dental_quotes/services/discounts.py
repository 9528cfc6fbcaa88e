from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from dental_quotes.models.quote import DiscountType
from dental_quotes.schemas.quote import Quote, QuoteItem, QuoteTotals

_HUNDRED = Decimal(100)


def _to_minor_units(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def clamp_discount_value(discount_type: DiscountType, value: float | None, base: int) -> float:
    amount = max(float(value or 0), 0.0)
    if discount_type == DiscountType.percent:
        return min(amount, 100.0)
    return min(amount, float(max(base, 0)))


def discount_amount(discount_type: DiscountType, value: float | None, base: int) -> int:
    if base <= 0 or not value or value <= 0:
        return 0
    if discount_type == DiscountType.percent:
        percent = min(Decimal(str(value)), _HUNDRED)
        return min(_to_minor_units(Decimal(base) * percent / _HUNDRED), base)
    return min(_to_minor_units(Decimal(str(value))), base)


def line_gross(item: QuoteItem) -> int:
    return item.quote_unit_price_gross * item.quote_qty


def line_discount_amount(item: QuoteItem) -> int:
    return discount_amount(
        item.quote_line_discount_type, item.quote_line_discount_value, line_gross(item)
    )


def line_total(item: QuoteItem) -> int:
    return line_gross(item) - line_discount_amount(item)


def quote_totals(quote: Quote) -> QuoteTotals:
    subtotal = sum(line_gross(item) for item in quote.items)
    line_discounts = sum(line_discount_amount(item) for item in quote.items)
    base = subtotal - line_discounts
    global_discount = discount_amount(
        quote.global_discount_type, quote.global_discount_value, base
    )
    return QuoteTotals(
        subtotal=subtotal,
        line_discounts=line_discounts,
        global_discount=global_discount,
        total=max(base - global_discount, 0),
    )


def total_discount(quote: Quote) -> int:
    totals = quote_totals(quote)
    return totals.line_discounts + totals.global_discount

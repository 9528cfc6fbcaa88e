from __future__ import annotations

from typing import Iterable, Sequence

from dental_quotes.models.quote import QuoteEventType, QuoteStatus
from dental_quotes.schemas.invoice import InvoiceRecord, InvoiceStatus, InvoiceSummaryOut, InvoiceType
from dental_quotes.schemas.quote import Quote, QuoteEvent
from dental_quotes.services.discounts import quote_totals
from dental_quotes.services.quote_state import make_event

REASON_SETTLED = "Quote is settled"
REASON_NOT_ACCEPTED = "Quote has not been accepted"
REASON_FULLY_INVOICED = "Quote is fully invoiced"


def active_invoices(invoices: Iterable[InvoiceRecord]) -> list[InvoiceRecord]:
    return [invoice for invoice in invoices if invoice.status != InvoiceStatus.storno]


def invoiced_amount(invoices: Iterable[InvoiceRecord]) -> int:
    return sum(invoice.total_gross for invoice in active_invoices(invoices))


def advance_total(invoices: Iterable[InvoiceRecord]) -> int:
    return sum(
        invoice.total_gross
        for invoice in active_invoices(invoices)
        if invoice.invoice_type == InvoiceType.advance
    )


def has_active_advance(invoices: Iterable[InvoiceRecord]) -> bool:
    return any(invoice.invoice_type == InvoiceType.advance for invoice in active_invoices(invoices))


def remaining_amount(total: int, invoices: Iterable[InvoiceRecord]) -> int:
    return max(0, total - invoiced_amount(invoices))


def invoice_disabled_reason(quote: Quote, invoices: Sequence[InvoiceRecord]) -> str | None:
    if quote.quote_status == QuoteStatus.completed:
        return REASON_SETTLED
    if quote.quote_status != QuoteStatus.started:
        return REASON_NOT_ACCEPTED
    total = quote_totals(quote).total
    if remaining_amount(total, invoices) <= 0 and not has_active_advance(invoices):
        return REASON_FULLY_INVOICED
    return None


def can_invoice(quote: Quote, invoices: Sequence[InvoiceRecord]) -> bool:
    return invoice_disabled_reason(quote, invoices) is None


def should_auto_complete(
    quote: Quote,
    invoices: Sequence[InvoiceRecord],
    invoice_type: InvoiceType | None = None,
) -> bool:
    if quote.quote_status != QuoteStatus.started or invoice_type == InvoiceType.advance:
        return False
    return invoiced_amount(invoices) >= quote_totals(quote).total


def summarize(
    quote: Quote,
    invoices: Sequence[InvoiceRecord],
    invoice_type: InvoiceType | None = None,
) -> InvoiceSummaryOut:
    total = quote_totals(quote).total
    reason = invoice_disabled_reason(quote, invoices)
    return InvoiceSummaryOut(
        total=total,
        invoiced_amount=invoiced_amount(invoices),
        remaining_amount=remaining_amount(total, invoices),
        advance_total=advance_total(invoices),
        has_active_advance=has_active_advance(invoices),
        can_invoice=reason is None,
        disabled_reason=reason,
        should_complete=should_auto_complete(quote, invoices, invoice_type),
    )


def invoice_created_event(invoice: InvoiceRecord, doctor_name: str) -> QuoteEvent:
    return make_event(
        QuoteEventType.invoice_created,
        doctor_name,
        invoice_id=invoice.invoice_id,
        invoice_number=invoice.invoice_number or invoice.invoice_id[:8],
        invoice_amount=invoice.total_gross,
        invoice_currency=invoice.currency,
        invoice_type=invoice.invoice_type,
    )


def invoiced_as_of_event(events: Sequence[QuoteEvent], upto: int) -> int:
    """Amount invoiced by the first ``upto`` events of the log."""
    return sum(
        event.invoice_amount or 0
        for event in events[: max(upto, 0)]
        if event.type == QuoteEventType.invoice_created
    )

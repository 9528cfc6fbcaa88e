from __future__ import annotations

import logging
import threading
import weakref
from typing import Callable, NamedTuple

from dental_quotes.core.settings import Settings
from dental_quotes.models.quote import QuoteStatus
from dental_quotes.schemas.invoice import InvoiceRecord, InvoiceSummaryOut
from dental_quotes.schemas.odontogram import OdontogramState
from dental_quotes.schemas.quote import (
    MergedQuoteItem,
    Quote,
    QuoteCreate,
    QuoteItem,
    QuoteItemUpdate,
    QuoteStatistics,
    QuoteTotals,
    QuoteUpdate,
    SessionGroup,
)
from dental_quotes.services import invoicing, merged_items, placement
from dental_quotes.services.catalog import CatalogLookup
from dental_quotes.services.discounts import clamp_discount_value, line_gross, quote_totals
from dental_quotes.services.odontogram import compute_state
from dental_quotes.services.placement import PlacementNotice, PlacementOutcome
from dental_quotes.services.quote_state import (
    QuoteAction,
    append_event,
    can_edit,
    duplicate,
    new_quote,
    restore,
    soft_delete,
    transition,
)
from dental_quotes.services.sequencing import SequencingClient
from dental_quotes.services.storage import QuoteCounters, QuoteStore

logger = logging.getLogger("dental_quotes.quotes")


class QuoteNotFound(LookupError):
    pass


class QuoteNotEditable(RuntimeError):
    pass


class InvoiceNotAllowed(RuntimeError):
    def __init__(self, quote_id: str, reason: str) -> None:
        super().__init__(f"{quote_id}: {reason}")
        self.reason = reason


class ToothListRejected(ValueError):
    def __init__(self, notice: PlacementNotice, message: str) -> None:
        super().__init__(message)
        self.notice = notice
        self.message = message


class ExportPayload(NamedTuple):
    quote: Quote
    totals: QuoteTotals
    doctor_name: str


def build_export_payload(quote: Quote, totals: QuoteTotals, doctor_name: str) -> ExportPayload:
    return ExportPayload(quote=quote.model_copy(deep=True), totals=totals, doctor_name=doctor_name)


# Entries live only while some caller holds the lock object.
_locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
_locks_guard = threading.Lock()


def quote_lock(quote_id: str) -> threading.Lock:
    with _locks_guard:
        lock = _locks.get(quote_id)
        if lock is None:
            lock = _locks[quote_id] = threading.Lock()
        return lock


def _clamp_session(value: int | None, expected_treatments: int) -> int:
    return min(max(int(value or 1), 1), max(expected_treatments, 1))


class QuoteService:
    def __init__(
        self,
        store: QuoteStore,
        counters: QuoteCounters,
        catalog: CatalogLookup,
        sequencing: SequencingClient,
        settings: Settings,
    ) -> None:
        self.store = store
        self.counters = counters
        self.catalog = catalog
        self.sequencing = sequencing
        self.settings = settings

    def doctor_name(self, doctor_id: str | None) -> str:
        if not doctor_id:
            return ""
        return self.settings.doctors.get(doctor_id, "")

    def get_quote(self, quote_id: str) -> Quote:
        quote = self.store.load(quote_id)
        if quote is None:
            raise QuoteNotFound(quote_id)
        return quote

    def list_quotes(self, include_deleted: bool = False) -> list[Quote]:
        return self.store.list_quotes(include_deleted=include_deleted)

    def list_patient_quotes(self, patient_id: str, include_deleted: bool = False) -> list[Quote]:
        return self.store.list_quotes(patient_id=patient_id, include_deleted=include_deleted)

    def quotes_by_status(
        self,
        status: QuoteStatus,
        patient_id: str | None = None,
        include_deleted: bool = False,
    ) -> list[Quote]:
        return [
            quote
            for quote in self.store.list_quotes(patient_id=patient_id, include_deleted=include_deleted)
            if quote.quote_status == status
        ]

    def statistics(self, patient_id: str | None = None) -> QuoteStatistics:
        quotes = self.store.list_quotes(patient_id=patient_id, include_deleted=True)
        active = [quote for quote in quotes if not quote.is_deleted]
        counts = {status: 0 for status in QuoteStatus}
        for quote in active:
            counts[quote.quote_status] += 1
        return QuoteStatistics(
            total=len(active),
            deleted=len(quotes) - len(active),
            draft=counts[QuoteStatus.draft],
            closed=counts[QuoteStatus.closed],
            started=counts[QuoteStatus.started],
            completed=counts[QuoteStatus.completed],
            rejected=counts[QuoteStatus.rejected],
        )

    def deleted_count(self) -> int:
        return self.counters.deleted_count()

    def create_quote(self, payload: QuoteCreate) -> Quote:
        doctor_id = payload.doctor_id or ""
        quote_id = self.sequencing.next_quote_id(payload.patient_id)
        quote = new_quote(
            quote_id=quote_id,
            quote_number=self.counters.next_quote_number(),
            patient_id=payload.patient_id,
            doctor_id=doctor_id,
            doctor_name=self.doctor_name(doctor_id),
            validity_days=self.settings.default_validity_days,
            patient_name=payload.patient_name,
            quote_type=payload.quote_type,
            currency=self.settings.default_currency,
        )
        self.store.save(quote)
        logger.info(
            "Quote %s created for patient %s (%s)",
            quote.quote_number,
            quote.patient_id,
            quote.quote_id,
        )
        return quote

    def _mutate(
        self,
        quote_id: str,
        change: Callable[[Quote], Quote | None],
        *,
        editable: bool = True,
    ) -> Quote | None:
        with quote_lock(quote_id):
            quote = self.get_quote(quote_id)
            if editable and not can_edit(quote):
                raise QuoteNotEditable(quote_id)
            updated = change(quote)
            if updated is None:
                return None
            self.store.save(updated)
            return updated

    def _place(
        self,
        quote_id: str,
        place: Callable[[Quote], PlacementOutcome],
    ) -> tuple[Quote, PlacementOutcome]:
        with quote_lock(quote_id):
            quote = self.get_quote(quote_id)
            if not can_edit(quote):
                raise QuoteNotEditable(quote_id)
            outcome = place(quote)
            if not outcome.changed:
                if outcome.notice is not None:
                    logger.debug("Placement on %s rejected: %s", quote_id, outcome.notice.value)
                return quote, outcome
            updated = quote.model_copy(update={"items": outcome.items})
            self.store.save(updated)
            return updated, outcome

    def edit_quote(self, quote_id: str, payload: QuoteUpdate) -> Quote:
        def change(quote: Quote) -> Quote:
            fields = payload.model_dump(exclude_unset=True, exclude_none=True)
            if "expected_treatments" in fields:
                expected = max(int(fields["expected_treatments"]), 1)
                fields["expected_treatments"] = expected
                fields["items"] = [
                    item.model_copy(
                        update={"treatment_session": _clamp_session(item.treatment_session, expected)}
                    )
                    if item.treatment_session and item.treatment_session > expected
                    else item
                    for item in quote.items
                ]
            updated = quote.model_copy(update=fields)
            totals = quote_totals(updated)
            return updated.model_copy(
                update={
                    "global_discount_value": clamp_discount_value(
                        updated.global_discount_type,
                        updated.global_discount_value,
                        totals.subtotal - totals.line_discounts,
                    )
                }
            )

        return self._mutate(quote_id, change)

    def update_item(self, quote_id: str, line_id: str, payload: QuoteItemUpdate) -> Quote | None:
        def change(quote: Quote) -> Quote | None:
            target = next((item for item in quote.items if item.line_id == line_id), None)
            if target is None:
                return None
            fields = payload.model_dump(exclude_unset=True, exclude_none=True)
            if "quote_qty" in fields:
                fields["quote_qty"] = max(int(fields["quote_qty"]), 1)
            if "quote_unit_price_gross" in fields:
                fields["quote_unit_price_gross"] = max(int(fields["quote_unit_price_gross"]), 0)
            if "treatment_session" in fields:
                fields["treatment_session"] = _clamp_session(
                    fields["treatment_session"], quote.expected_treatments
                )
            if "tooth_num" in fields:
                fields.update(self._checked_teeth(quote, target, fields["tooth_num"]))
            updated = target.model_copy(update=fields)
            updated = updated.model_copy(
                update={
                    "quote_line_discount_value": clamp_discount_value(
                        updated.quote_line_discount_type,
                        updated.quote_line_discount_value,
                        line_gross(updated),
                    )
                }
            )
            items = [updated if item.line_id == line_id else item for item in quote.items]
            return quote.model_copy(update={"items": items})

        return self._mutate(quote_id, change)

    def _checked_teeth(self, quote: Quote, target: QuoteItem, tooth_num: str) -> dict:
        catalog_item = self.catalog.get_catalog_item(target.catalog_item_id)
        if catalog_item is None or catalog_item.is_full_mouth:
            return {"tooth_num": tooth_num}
        rejection = placement.check_tooth_list(
            quote.items, catalog_item, tooth_num, line_id=target.line_id
        )
        if rejection is not None:
            raise ToothListRejected(rejection.notice, rejection.message or rejection.notice.value)
        fields = {"tooth_num": tooth_num}
        if catalog_item.is_arch or catalog_item.is_quadrant:
            teeth = [int(value) for value in tooth_num.split(",") if value.strip()]
            if teeth:
                fields["treated_area"] = placement.area_for_teeth(catalog_item, teeth)
        return fields

    def remove_item(self, quote_id: str, line_id: str) -> Quote | None:
        def change(quote: Quote) -> Quote | None:
            items = [item for item in quote.items if item.line_id != line_id]
            if len(items) == len(quote.items):
                return None
            return quote.model_copy(update={"items": items})

        return self._mutate(quote_id, change)

    def reorder_items(self, quote_id: str, from_index: int, to_index: int) -> Quote | None:
        def change(quote: Quote) -> Quote | None:
            items = list(quote.items)
            if not (0 <= from_index < len(items) and 0 <= to_index < len(items)):
                return None
            items.insert(to_index, items.pop(from_index))
            return quote.model_copy(update={"items": items})

        return self._mutate(quote_id, change)

    def _catalog_missing(self, quote: Quote, catalog_item_id: str) -> PlacementOutcome:
        return PlacementOutcome(
            items=list(quote.items),
            notice=PlacementNotice.not_found,
            message=f"Catalog item {catalog_item_id} not found",
        )

    def add_item(
        self,
        quote_id: str,
        catalog_item_id: str,
        *,
        tooth_num: str | None = None,
        treated_area: str | None = None,
    ) -> tuple[Quote, PlacementOutcome]:
        def place(quote: Quote) -> PlacementOutcome:
            catalog_item = self.catalog.get_catalog_item(catalog_item_id)
            if catalog_item is None:
                return self._catalog_missing(quote, catalog_item_id)
            return placement.add_from_catalog(
                quote.items, catalog_item, tooth_num=tooth_num, treated_area=treated_area
            )

        return self._place(quote_id, place)

    def tooth_click(
        self,
        quote_id: str,
        catalog_item_id: str,
        tooth: int,
        baseline: OdontogramState | None = None,
    ) -> tuple[Quote, PlacementOutcome]:
        def place(quote: Quote) -> PlacementOutcome:
            catalog_item = self.catalog.get_catalog_item(catalog_item_id)
            if catalog_item is None:
                return self._catalog_missing(quote, catalog_item_id)
            return placement.place_on_tooth(quote.items, catalog_item, tooth, baseline)

        return self._place(quote_id, place)

    def complete_selection(
        self,
        quote_id: str,
        catalog_item_id: str,
        tooth: int,
        selected_surfaces: list[str] | None = None,
        selected_material: str | None = None,
        baseline: OdontogramState | None = None,
    ) -> tuple[Quote, PlacementOutcome]:
        def place(quote: Quote) -> PlacementOutcome:
            catalog_item = self.catalog.get_catalog_item(catalog_item_id)
            if catalog_item is None:
                return self._catalog_missing(quote, catalog_item_id)
            return placement.complete_selection(
                quote.items,
                catalog_item,
                tooth,
                selected_surfaces,
                selected_material,
                baseline,
            )

        return self._place(quote_id, place)

    def remove_last_full_mouth(
        self, quote_id: str, catalog_item_id: str
    ) -> tuple[Quote, PlacementOutcome]:
        return self._place(
            quote_id, lambda quote: placement.remove_last_full_mouth(quote.items, catalog_item_id)
        )

    def remove_tooth(self, quote_id: str, line_id: str, tooth: str) -> tuple[Quote, PlacementOutcome]:
        return self._place(
            quote_id, lambda quote: placement.remove_tooth_from_item(quote.items, line_id, tooth)
        )

    def _replace_items(
        self, quote_id: str, rebuild: Callable[[Quote], list[QuoteItem] | None]
    ) -> Quote | None:
        def change(quote: Quote) -> Quote | None:
            items = rebuild(quote)
            if items is None:
                return None
            return quote.model_copy(update={"items": items})

        return self._mutate(quote_id, change)

    def move_in_session(
        self, quote_id: str, catalog_item_id: str, session: int, direction: str
    ) -> Quote | None:
        return self._replace_items(
            quote_id,
            lambda quote: merged_items.move_in_session(
                quote.items, catalog_item_id, session, direction
            ),
        )

    def drop_on_session(
        self, quote_id: str, catalog_item_id: str, from_session: int, to_session: int
    ) -> Quote | None:
        return self._replace_items(
            quote_id,
            lambda quote: merged_items.drop_on_session(
                quote.items,
                catalog_item_id,
                from_session,
                _clamp_session(to_session, quote.expected_treatments),
            ),
        )

    def remove_group(
        self, quote_id: str, catalog_item_id: str, session: int | None = None
    ) -> Quote | None:
        return self._replace_items(
            quote_id,
            lambda quote: merged_items.remove_group(quote.items, catalog_item_id, session),
        )

    def apply_action(
        self, quote_id: str, action: QuoteAction, doctor_id: str | None = None
    ) -> Quote | None:
        def change(quote: Quote) -> Quote | None:
            return transition(quote, action, self.doctor_name(doctor_id or quote.doctor_id))

        updated = self._mutate(quote_id, change, editable=False)
        if updated is not None:
            logger.info(
                "Quote %s %s -> %s", updated.quote_number, action.value, updated.quote_status.value
            )
        return updated

    def close_quote(self, quote_id: str, doctor_id: str | None = None) -> Quote | None:
        return self.apply_action(quote_id, QuoteAction.close, doctor_id)

    def reopen_quote(self, quote_id: str, doctor_id: str | None = None) -> Quote | None:
        return self.apply_action(quote_id, QuoteAction.reopen, doctor_id)

    def accept_quote(self, quote_id: str, doctor_id: str | None = None) -> Quote | None:
        return self.apply_action(quote_id, QuoteAction.accept, doctor_id)

    def reject_quote(self, quote_id: str, doctor_id: str | None = None) -> Quote | None:
        return self.apply_action(quote_id, QuoteAction.reject, doctor_id)

    def revoke_acceptance(self, quote_id: str, doctor_id: str | None = None) -> Quote | None:
        return self.apply_action(quote_id, QuoteAction.revoke_acceptance, doctor_id)

    def revoke_rejection(self, quote_id: str, doctor_id: str | None = None) -> Quote | None:
        return self.apply_action(quote_id, QuoteAction.revoke_rejection, doctor_id)

    def complete_treatment(self, quote_id: str, doctor_id: str | None = None) -> Quote | None:
        return self.apply_action(quote_id, QuoteAction.complete, doctor_id)

    def reopen_treatment(self, quote_id: str, doctor_id: str | None = None) -> Quote | None:
        return self.apply_action(quote_id, QuoteAction.reopen_treatment, doctor_id)

    def delete_quote(self, quote_id: str, doctor_id: str | None = None) -> Quote | None:
        updated = self._mutate(
            quote_id,
            lambda quote: soft_delete(quote, self.doctor_name(doctor_id or quote.doctor_id)),
            editable=False,
        )
        if updated is not None:
            deleted = self.counters.increment_deleted()
            logger.info("Quote %s deleted (%s deleted in total)", updated.quote_number, deleted)
        return updated

    def restore_quote(self, quote_id: str) -> Quote | None:
        return self._mutate(quote_id, restore, editable=False)

    def duplicate_quote(self, quote_id: str, doctor_id: str | None = None) -> Quote:
        source = self.get_quote(quote_id)
        copy = duplicate(
            source,
            quote_id=self.sequencing.next_quote_id(source.patient_id),
            quote_number=self.counters.next_quote_number(),
            doctor_name=self.doctor_name(doctor_id or source.doctor_id),
            validity_days=self.settings.default_validity_days,
        )
        self.store.save(copy)
        logger.info("Quote %s duplicated as %s", source.quote_number, copy.quote_number)
        return copy

    def totals(self, quote_id: str) -> QuoteTotals:
        return quote_totals(self.get_quote(quote_id))

    def merged(self, quote_id: str) -> list[MergedQuoteItem]:
        return merged_items.merge_all(self.get_quote(quote_id).items)

    def sessions(self, quote_id: str) -> list[SessionGroup]:
        quote = self.get_quote(quote_id)
        return merged_items.session_groups(quote.items, quote.expected_treatments)

    def odontogram(self, quote_id: str, baseline: OdontogramState | None = None) -> OdontogramState:
        return compute_state(self.get_quote(quote_id).items, baseline)

    def invoice_summary(
        self, quote_id: str, invoices: list[InvoiceRecord]
    ) -> InvoiceSummaryOut:
        return invoicing.summarize(self.get_quote(quote_id), invoices)

    def record_invoice(
        self,
        quote_id: str,
        invoice: InvoiceRecord,
        invoices: list[InvoiceRecord],
        doctor_id: str | None = None,
    ) -> tuple[Quote, InvoiceSummaryOut]:
        def change(quote: Quote) -> Quote:
            reason = invoicing.invoice_disabled_reason(quote, known)
            if reason is not None:
                raise InvoiceNotAllowed(quote_id, reason)
            event = invoicing.invoice_created_event(
                invoice, self.doctor_name(doctor_id or quote.doctor_id)
            )
            return append_event(quote, event)

        known = [record for record in invoices if record.invoice_id != invoice.invoice_id]
        updated = self._mutate(quote_id, change, editable=False)
        summary = invoicing.summarize(updated, [*known, invoice], invoice.invoice_type)
        logger.info(
            "Invoice %s recorded on quote %s (remaining %s)",
            invoice.invoice_id,
            updated.quote_number,
            summary.remaining_amount,
        )
        return updated, summary

    def export_payload(self, quote_id: str) -> ExportPayload:
        quote = self.get_quote(quote_id)
        return build_export_payload(quote, quote_totals(quote), self.doctor_name(quote.doctor_id))

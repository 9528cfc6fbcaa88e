import gc
import re
import threading
import time

import pytest

from dental_quotes.models.quote import DiscountType, QuoteEventType, QuoteStatus, QuoteType
from dental_quotes.schemas.invoice import InvoiceRecord, InvoiceType
from dental_quotes.schemas.quote import QuoteCreate, QuoteItemUpdate, QuoteUpdate
from dental_quotes.services import quotes as quote_services
from dental_quotes.services.invoicing import REASON_FULLY_INVOICED, REASON_NOT_ACCEPTED, REASON_SETTLED
from dental_quotes.services.placement import PlacementNotice
from dental_quotes.services.quote_state import QuoteAction
from dental_quotes.services.quotes import (
    InvoiceNotAllowed,
    QuoteNotEditable,
    QuoteNotFound,
    QuoteService,
    ToothListRejected,
    quote_lock,
)
from dental_quotes.services.sequencing import QuoteLimitReached, SequencingClient


def _create(service, patient_id="p1", **fields):
    return service.create_quote(
        QuoteCreate(patient_id=patient_id, patient_name="Nagy Éva", doctor_id="doc-1", **fields)
    )


def _add(service, quote_id, catalog_item_id, **fields):
    quote, outcome = service.add_item(quote_id, catalog_item_id, **fields)
    assert outcome.accepted, outcome.message
    return quote, outcome.line_id


def test_create_quote_numbers_and_persists(service):
    first = _create(service)
    second = _create(service, quote_type=QuoteType.visual)
    assert first.quote_number == "TEST-0001"
    assert second.quote_number == "TEST-0002"
    assert re.fullmatch(r"[0-9a-f]{32}", first.quote_id)
    assert second.quote_type == QuoteType.visual
    assert first.events[0].doctor_name == "Dr. Kovács Anna"

    loaded = service.get_quote(first.quote_id)
    assert loaded == first


def test_get_unknown_quote_raises(service):
    with pytest.raises(QuoteNotFound):
        service.get_quote("missing")


def test_quote_limit_from_sequencing_is_not_swallowed(service):
    class LimitedSequencing:
        def next_quote_id(self, patient_id):
            raise QuoteLimitReached("QUOTE_LIMIT_REACHED")

    service.sequencing = LimitedSequencing()
    with pytest.raises(QuoteLimitReached):
        _create(service)
    assert service.list_quotes() == []


def test_edit_quote_clamps_values(service):
    quote = _create(service)
    _add(service, quote.quote_id, "crown", tooth_num="16")

    edited = service.edit_quote(
        quote.quote_id,
        QuoteUpdate(
            quote_name="Felső protetika",
            global_discount_type=DiscountType.fixed,
            global_discount_value=999999,
            comment_to_patient="Kontroll fél év múlva",
            expected_treatments=0,
        ),
    )
    assert edited.quote_name == "Felső protetika"
    assert edited.global_discount_value == 120000
    assert edited.expected_treatments == 1
    assert edited.comment_to_patient == "Kontroll fél év múlva"
    assert service.totals(quote.quote_id).total == 0

    percent = service.edit_quote(
        quote.quote_id,
        QuoteUpdate(global_discount_type=DiscountType.percent, global_discount_value=250),
    )
    assert percent.global_discount_value == 100


def test_shrinking_expected_treatments_clamps_item_sessions(service):
    quote = _create(service)
    service.edit_quote(quote.quote_id, QuoteUpdate(expected_treatments=3))
    _, line_id = _add(service, quote.quote_id, "crown", tooth_num="16")
    service.update_item(quote.quote_id, line_id, QuoteItemUpdate(treatment_session=3))

    edited = service.edit_quote(quote.quote_id, QuoteUpdate(expected_treatments=2))
    assert edited.items[0].treatment_session == 2


def test_update_item_clamps_values(service):
    quote = _create(service)
    _, line_id = _add(service, quote.quote_id, "crown", tooth_num="16")

    updated = service.update_item(
        quote.quote_id,
        line_id,
        QuoteItemUpdate(
            quote_qty=0,
            quote_line_discount_type=DiscountType.fixed,
            quote_line_discount_value=500000,
            treatment_session=9,
        ),
    )
    item = updated.items[0]
    assert item.quote_qty == 1
    assert item.quote_line_discount_value == 120000
    assert item.treatment_session == 1

    percent = service.update_item(
        quote.quote_id,
        line_id,
        QuoteItemUpdate(quote_line_discount_type=DiscountType.percent, quote_line_discount_value=101),
    )
    assert percent.items[0].quote_line_discount_value == 100
    assert service.update_item(quote.quote_id, "nope", QuoteItemUpdate(quote_qty=2)) is None


def test_remove_and_reorder_items(service):
    quote = _create(service)
    _, crown = _add(service, quote.quote_id, "crown", tooth_num="16")
    _, scaling = _add(service, quote.quote_id, "scaling")
    _, extraction = _add(service, quote.quote_id, "extraction", tooth_num="48")

    moved = service.reorder_items(quote.quote_id, 2, 0)
    assert [item.line_id for item in moved.items] == [extraction, crown, scaling]
    assert service.reorder_items(quote.quote_id, 0, 5) is None

    removed = service.remove_item(quote.quote_id, crown)
    assert [item.line_id for item in removed.items] == [extraction, scaling]
    assert service.remove_item(quote.quote_id, crown) is None


def test_closed_quote_rejects_edits(service):
    quote = _create(service)
    service.close_quote(quote.quote_id)

    with pytest.raises(QuoteNotEditable):
        service.edit_quote(quote.quote_id, QuoteUpdate(quote_name="x"))
    with pytest.raises(QuoteNotEditable):
        service.add_item(quote.quote_id, "crown", tooth_num="16")
    with pytest.raises(QuoteNotEditable):
        service.tooth_click(quote.quote_id, "crown", 16)


def test_tooth_click_scenario(service):
    quote = _create(service, quote_type=QuoteType.visual)
    service.tooth_click(quote.quote_id, "curettage", 16)
    same, outcome = service.tooth_click(quote.quote_id, "curettage", 17)
    assert outcome.notice == PlacementNotice.duplicate
    assert len(same.items) == 1

    updated, outcome = service.tooth_click(quote.quote_id, "curettage", 26)
    assert outcome.accepted
    assert [item.treated_area for item in updated.items] == ["Q1", "Q2"]
    assert service.get_quote(quote.quote_id).items == updated.items


def test_tooth_click_unknown_or_inactive_catalog_item(service):
    quote = _create(service)
    for catalog_item_id in ("missing", "retired"):
        unchanged, outcome = service.tooth_click(quote.quote_id, catalog_item_id, 16)
        assert outcome.notice == PlacementNotice.not_found
        assert unchanged.items == []


def test_selection_flow(service):
    quote = _create(service)
    _, outcome = service.tooth_click(quote.quote_id, "filling", 36)
    assert outcome.notice == PlacementNotice.selection_required

    updated, outcome = service.complete_selection(quote.quote_id, "filling", 36, ["mesial", "occlusal"])
    assert outcome.accepted
    assert updated.items[0].resolved_layers == ["filling-composite-mesial", "filling-composite-occlusal"]


def test_full_mouth_and_tooth_removal(service):
    quote = _create(service)
    _add(service, quote.quote_id, "scaling")
    _add(service, quote.quote_id, "scaling")
    after, outcome = service.remove_last_full_mouth(quote.quote_id, "scaling")
    assert outcome.accepted
    assert len(after.items) == 1

    service.tooth_click(quote.quote_id, "locator", 16)
    with_locator, _ = service.tooth_click(quote.quote_id, "locator", 26)
    locator = with_locator.items[-1]
    assert locator.tooth_num == "16,26"

    trimmed, _ = service.remove_tooth(quote.quote_id, locator.line_id, "16")
    assert trimmed.items[-1].tooth_num == "26"


def test_session_operations(service):
    quote = _create(service)
    service.edit_quote(quote.quote_id, QuoteUpdate(expected_treatments=2))
    _add(service, quote.quote_id, "crown", tooth_num="16")
    _add(service, quote.quote_id, "scaling")
    _add(service, quote.quote_id, "crown", tooth_num="26")

    moved = service.move_in_session(quote.quote_id, "scaling", 1, "up")
    assert [item.catalog_item_id for item in moved.items] == ["scaling", "crown", "crown"]
    assert service.move_in_session(quote.quote_id, "scaling", 1, "up") is None

    dropped = service.drop_on_session(quote.quote_id, "crown", 1, 7)
    assert {item.treatment_session for item in dropped.items if item.catalog_item_id == "crown"} == {2}

    sessions = service.sessions(quote.quote_id)
    assert [group.treatment_session for group in sessions] == [1, 2]
    assert [merged.catalog_item_id for merged in sessions[1].merged] == ["crown"]
    assert sessions[1].merged[0].treated_area_text == "16, 26"

    removed = service.remove_group(quote.quote_id, "crown", 2)
    assert [item.catalog_item_id for item in removed.items] == ["scaling"]
    assert service.remove_group(quote.quote_id, "crown") is None


def test_lifecycle_through_service(service):
    quote = _create(service)
    quote_id = quote.quote_id
    assert service.accept_quote(quote_id) is None
    assert service.close_quote(quote_id).quote_status == QuoteStatus.closed
    assert service.reopen_quote(quote_id).quote_status == QuoteStatus.draft
    service.close_quote(quote_id)
    assert service.reject_quote(quote_id).quote_status == QuoteStatus.rejected
    assert service.revoke_rejection(quote_id).quote_status == QuoteStatus.closed
    assert service.accept_quote(quote_id, "doc-2").quote_status == QuoteStatus.started
    assert service.revoke_acceptance(quote_id).quote_status == QuoteStatus.closed
    service.accept_quote(quote_id)
    assert service.complete_treatment(quote_id).quote_status == QuoteStatus.completed
    final = service.reopen_treatment(quote_id)
    assert final.quote_status == QuoteStatus.started

    assert [event.type for event in final.events] == [
        QuoteEventType.created,
        QuoteEventType.closed,
        QuoteEventType.reopened,
        QuoteEventType.closed,
        QuoteEventType.rejected,
        QuoteEventType.rejection_revoked,
        QuoteEventType.accepted,
        QuoteEventType.acceptance_revoked,
        QuoteEventType.accepted,
        QuoteEventType.completed,
        QuoteEventType.completion_revoked,
    ]
    assert final.events[6].doctor_name == "Dr. Szabó Péter"
    assert service.apply_action(quote_id, QuoteAction.close) is None


def test_delete_restore_and_statistics(service):
    draft = _create(service)
    started = _create(service, patient_id="p2")
    service.close_quote(started.quote_id)
    service.accept_quote(started.quote_id)

    assert service.delete_quote(started.quote_id) is None
    deleted = service.delete_quote(draft.quote_id)
    assert deleted.is_deleted
    assert deleted.events[-1].type == QuoteEventType.deleted
    assert service.delete_quote(draft.quote_id) is None
    assert service.deleted_count() == 1

    assert [quote.quote_id for quote in service.list_quotes()] == [started.quote_id]
    assert len(service.list_quotes(include_deleted=True)) == 2
    assert service.list_patient_quotes("p1") == []
    assert [quote.quote_id for quote in service.quotes_by_status(QuoteStatus.started)] == [
        started.quote_id
    ]

    stats = service.statistics()
    assert (stats.total, stats.deleted, stats.started, stats.draft) == (1, 1, 1, 0)

    restored = service.restore_quote(draft.quote_id)
    assert restored.is_deleted is False
    assert restored.events == deleted.events
    assert service.restore_quote(draft.quote_id) is None
    assert service.statistics().draft == 1


def test_duplicate_quote(service):
    quote = _create(service)
    _add(service, quote.quote_id, "crown", tooth_num="16")
    service.close_quote(quote.quote_id)

    copy = service.duplicate_quote(quote.quote_id, "doc-2")
    assert copy.quote_number == "TEST-0002"
    assert copy.quote_id != quote.quote_id
    assert copy.quote_status == QuoteStatus.draft
    assert copy.quote_name == "Nagy Éva árajánlata (másolat)"
    assert copy.items[0].line_id != service.get_quote(quote.quote_id).items[0].line_id
    assert [(event.type, event.doctor_name) for event in copy.events] == [
        (QuoteEventType.created, "Dr. Szabó Péter")
    ]


def test_views_and_export(service):
    quote = _create(service)
    _add(service, quote.quote_id, "crown", tooth_num="16")
    _add(service, quote.quote_id, "extraction", tooth_num="26")

    assert service.totals(quote.quote_id).total == 132000
    assert [group.catalog_item_id for group in service.merged(quote.quote_id)] == ["crown", "extraction"]
    state = service.odontogram(quote.quote_id)
    assert state.teeth["16"].crown_material == "zircon"
    assert state.teeth["26"].tooth_selection == "none"

    payload = service.export_payload(quote.quote_id)
    assert payload.totals.total == 132000
    assert payload.doctor_name == "Dr. Kovács Anna"
    assert payload.quote.quote_id == quote.quote_id


def test_record_invoice_signals_completion(service):
    quote = _create(service)
    _add(service, quote.quote_id, "crown", tooth_num="16")
    service.close_quote(quote.quote_id)
    service.accept_quote(quote.quote_id)

    advance = InvoiceRecord(
        invoice_id="inv-1", quote_id=quote.quote_id, total_gross=120000, invoice_type=InvoiceType.advance
    )
    updated, summary = service.record_invoice(quote.quote_id, advance, [])
    assert updated.events[-1].type == QuoteEventType.invoice_created
    assert summary.should_complete is False

    final = InvoiceRecord(invoice_id="inv-2", quote_id=quote.quote_id, total_gross=120000)
    updated, summary = service.record_invoice(quote.quote_id, final, [])
    assert summary.should_complete is True
    assert summary.remaining_amount == 0
    assert updated.quote_status == QuoteStatus.started
    assert [event.invoice_id for event in updated.events if event.invoice_id] == ["inv-1", "inv-2"]

    extra = InvoiceRecord(invoice_id="inv-3", quote_id=quote.quote_id, total_gross=1000)
    with pytest.raises(InvoiceNotAllowed) as exc:
        service.record_invoice(quote.quote_id, extra, [final])
    assert exc.value.reason == REASON_FULLY_INVOICED

    service.complete_treatment(quote.quote_id)
    with pytest.raises(InvoiceNotAllowed) as exc:
        service.record_invoice(quote.quote_id, extra, [final])
    assert exc.value.reason == REASON_SETTLED
    assert [event.invoice_id for event in service.get_quote(quote.quote_id).events if event.invoice_id] == [
        "inv-1",
        "inv-2",
    ]


def test_quote_lock_is_shared_per_quote():
    assert quote_lock("a") is quote_lock("a")
    assert quote_lock("a") is not quote_lock("b")


def test_unused_quote_locks_are_dropped():
    lock = quote_lock("short-lived")
    assert "short-lived" in quote_services._locks
    del lock
    gc.collect()
    assert "short-lived" not in quote_services._locks


@pytest.mark.parametrize(
    "actions",
    [
        (),
        (QuoteAction.close,),
        (QuoteAction.close, QuoteAction.reject),
    ],
)
def test_record_invoice_requires_an_accepted_quote(service, actions):
    quote = _create(service)
    _add(service, quote.quote_id, "crown", tooth_num="16")
    for action in actions:
        service.apply_action(quote.quote_id, action)

    invoice = InvoiceRecord(invoice_id="inv-1", quote_id=quote.quote_id, total_gross=120000)
    with pytest.raises(InvoiceNotAllowed) as exc:
        service.record_invoice(quote.quote_id, invoice, [])
    assert exc.value.reason == REASON_NOT_ACCEPTED
    events = service.get_quote(quote.quote_id).events
    assert QuoteEventType.invoice_created not in [event.type for event in events]


def test_capped_arch_item_update_respects_the_cap(service):
    quote = _create(service)
    _, outcome = service.tooth_click(quote.quote_id, "locator", 11)

    with pytest.raises(ToothListRejected) as exc:
        service.update_item(quote.quote_id, outcome.line_id, QuoteItemUpdate(tooth_num="11,12,13,14,15"))
    assert exc.value.notice == PlacementNotice.cap_reached
    assert service.get_quote(quote.quote_id).items[0].teeth == ["11"]

    with pytest.raises(ToothListRejected) as exc:
        service.update_item(quote.quote_id, outcome.line_id, QuoteItemUpdate(tooth_num="11,31"))
    assert exc.value.notice == PlacementNotice.tooth_not_allowed

    updated = service.update_item(quote.quote_id, outcome.line_id, QuoteItemUpdate(tooth_num="12,13"))
    assert updated.items[0].teeth == ["12", "13"]
    assert updated.items[0].treated_area == "upper"

    moved = service.update_item(quote.quote_id, outcome.line_id, QuoteItemUpdate(tooth_num="31"))
    assert moved.items[0].treated_area == "lower"


def test_allowed_teeth_apply_to_item_updates(service):
    quote = _create(service)
    _, outcome = service.tooth_click(quote.quote_id, "veneer", 11)
    with pytest.raises(ToothListRejected) as exc:
        service.update_item(quote.quote_id, outcome.line_id, QuoteItemUpdate(tooth_num="46"))
    assert exc.value.notice == PlacementNotice.tooth_not_allowed
    assert service.get_quote(quote.quote_id).items[0].tooth_num == "11"


@pytest.mark.parametrize(
    ("catalog_item_id", "tooth_num", "notice"),
    [
        ("locator", "31,32,33", PlacementNotice.cap_reached),
        ("locator", "11,31", PlacementNotice.tooth_not_allowed),
        ("locator", "31,31", PlacementNotice.duplicate),
        ("veneer", "46", PlacementNotice.tooth_not_allowed),
        ("curettage", "16,26", PlacementNotice.tooth_not_allowed),
        ("crown", "1x", PlacementNotice.tooth_not_allowed),
    ],
)
def test_catalog_add_applies_tooth_rules(service, catalog_item_id, tooth_num, notice):
    quote = _create(service)
    same, outcome = service.add_item(quote.quote_id, catalog_item_id, tooth_num=tooth_num)
    assert outcome.notice == notice
    assert same.items == []
    assert service.get_quote(quote.quote_id).items == []


def test_catalog_add_of_arch_item_claims_the_arch(service):
    quote = _create(service)
    added, line_id = _add(service, quote.quote_id, "locator", tooth_num="31,32")
    assert added.items[0].treated_area == "lower"

    _, outcome = service.tooth_click(quote.quote_id, "locator", 33)
    assert outcome.notice == PlacementNotice.cap_reached

    same, outcome = service.add_item(quote.quote_id, "locator", tooth_num="41")
    assert outcome.notice == PlacementNotice.duplicate
    assert [item.line_id for item in same.items] == [line_id]


def test_status_filter_honours_deleted_quotes(service):
    quote = _create(service)
    service.delete_quote(quote.quote_id)
    assert service.quotes_by_status(QuoteStatus.draft) == []
    assert [item.quote_id for item in service.quotes_by_status(QuoteStatus.draft, include_deleted=True)] == [
        quote.quote_id
    ]


class MemoryStore:
    def __init__(self):
        self.quotes = {}

    def load(self, quote_id):
        return self.quotes.get(quote_id)

    def save(self, quote):
        time.sleep(0.001)
        self.quotes[quote.quote_id] = quote

    def list_quotes(self, patient_id=None, include_deleted=False):
        return [
            quote
            for quote in self.quotes.values()
            if (patient_id is None or quote.patient_id == patient_id)
            and (include_deleted or not quote.is_deleted)
        ]


class MemoryCounters:
    def __init__(self):
        self.counter = 0
        self.deleted = 0

    def next_quote_number(self):
        self.counter += 1
        return f"MEMO-{self.counter:04d}"

    def increment_deleted(self):
        self.deleted += 1
        return self.deleted

    def deleted_count(self):
        return self.deleted


def test_concurrent_item_adds_are_serialised(catalog, test_settings):
    service = QuoteService(
        store=MemoryStore(),
        counters=MemoryCounters(),
        catalog=catalog,
        sequencing=SequencingClient(None),
        settings=test_settings,
    )
    quote = _create(service)
    assert quote.quote_number == "MEMO-0001"

    def worker():
        for _ in range(5):
            service.add_item(quote.quote_id, "scaling")

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    items = service.get_quote(quote.quote_id).items
    assert len(items) == 20
    assert len({item.line_id for item in items}) == 20

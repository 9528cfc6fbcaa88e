from contextlib import contextmanager
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from dental_quotes.deps import get_doctor_id, get_quote_service
from dental_quotes.models.quote import QuoteStatus
from dental_quotes.schemas.invoice import InvoiceRecord, InvoiceRecordIn, InvoiceSummaryOut
from dental_quotes.schemas.odontogram import OdontogramState
from dental_quotes.schemas.quote import (
    InvoiceRecordOut,
    MergedQuoteItem,
    PlacementResultOut,
    Quote,
    QuoteCreate,
    QuoteExportOut,
    QuoteItemAdd,
    QuoteItemMove,
    QuoteItemUpdate,
    QuoteStatistics,
    QuoteTotals,
    QuoteUpdate,
    SelectionComplete,
    SelectionRequirementOut,
    SessionDrop,
    SessionGroup,
    SessionMove,
    ToothClick,
    ToothRemove,
)
from dental_quotes.services.placement import PlacementOutcome
from dental_quotes.services.quote_state import QuoteAction, available_actions
from dental_quotes.services.quotes import (
    InvoiceNotAllowed,
    QuoteNotEditable,
    QuoteNotFound,
    QuoteService,
    ToothListRejected,
)
from dental_quotes.services.sequencing import QuoteLimitReached

router = APIRouter(prefix="/quotes", tags=["quotes"])
patient_router = APIRouter(prefix="/patients/{patient_id}/quotes", tags=["quotes"])


@contextmanager
def quote_errors():
    try:
        yield
    except QuoteNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Quote not found")
    except QuoteNotEditable:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Quote is not editable")
    except QuoteLimitReached:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Quote limit reached")
    except InvoiceNotAllowed as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.reason)
    except ToothListRejected as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.message)


def conflict_if_none(quote: Quote | None, detail: str) -> Quote:
    if quote is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)
    return quote


def placement_result(quote: Quote, outcome: PlacementOutcome) -> PlacementResultOut:
    selection = None
    if outcome.selection is not None:
        selection = SelectionRequirementOut(
            needs_surfaces=outcome.selection.needs_surfaces,
            max_surfaces=outcome.selection.max_surfaces,
            needs_material=outcome.selection.needs_material,
        )
    return PlacementResultOut(
        quote=quote,
        accepted=outcome.accepted,
        line_id=outcome.line_id,
        notice=outcome.notice.value if outcome.notice else None,
        message=outcome.message,
        selection=selection,
    )


@patient_router.get("", response_model=list[Quote])
def list_patient_quotes(
    patient_id: str,
    include_deleted: bool = Query(default=False),
    service: QuoteService = Depends(get_quote_service),
):
    return service.list_patient_quotes(patient_id, include_deleted=include_deleted)


@patient_router.get("/statistics", response_model=QuoteStatistics)
def patient_quote_statistics(
    patient_id: str,
    service: QuoteService = Depends(get_quote_service),
):
    return service.statistics(patient_id)


@router.post("", response_model=Quote, status_code=status.HTTP_201_CREATED)
def create_quote(
    payload: QuoteCreate,
    service: QuoteService = Depends(get_quote_service),
    doctor_id: str | None = Depends(get_doctor_id),
):
    if payload.doctor_id is None and doctor_id is not None:
        payload = payload.model_copy(update={"doctor_id": doctor_id})
    with quote_errors():
        return service.create_quote(payload)


@router.get("", response_model=list[Quote])
def list_quotes(
    include_deleted: bool = Query(default=False),
    quote_status: Optional[QuoteStatus] = Query(default=None, alias="status"),
    service: QuoteService = Depends(get_quote_service),
):
    if quote_status is not None:
        return service.quotes_by_status(quote_status, include_deleted=include_deleted)
    return service.list_quotes(include_deleted=include_deleted)


@router.get("/statistics", response_model=QuoteStatistics)
def quote_statistics(service: QuoteService = Depends(get_quote_service)):
    return service.statistics()


@router.get("/{quote_id}", response_model=Quote)
def get_quote(quote_id: str, service: QuoteService = Depends(get_quote_service)):
    with quote_errors():
        return service.get_quote(quote_id)


@router.patch("/{quote_id}", response_model=Quote)
def update_quote(
    quote_id: str,
    payload: QuoteUpdate,
    service: QuoteService = Depends(get_quote_service),
):
    with quote_errors():
        return service.edit_quote(quote_id, payload)


@router.delete("/{quote_id}", response_model=Quote)
def delete_quote(
    quote_id: str,
    service: QuoteService = Depends(get_quote_service),
    doctor_id: str | None = Depends(get_doctor_id),
):
    with quote_errors():
        quote = service.delete_quote(quote_id, doctor_id)
    return conflict_if_none(quote, "Quote cannot be deleted")


@router.post("/{quote_id}/restore", response_model=Quote)
def restore_quote(quote_id: str, service: QuoteService = Depends(get_quote_service)):
    with quote_errors():
        quote = service.restore_quote(quote_id)
    return conflict_if_none(quote, "Quote is not deleted")


@router.post("/{quote_id}/duplicate", response_model=Quote, status_code=status.HTTP_201_CREATED)
def duplicate_quote(
    quote_id: str,
    service: QuoteService = Depends(get_quote_service),
    doctor_id: str | None = Depends(get_doctor_id),
):
    with quote_errors():
        return service.duplicate_quote(quote_id, doctor_id)


@router.get("/{quote_id}/actions", response_model=list[QuoteAction])
def list_quote_actions(quote_id: str, service: QuoteService = Depends(get_quote_service)):
    with quote_errors():
        return available_actions(service.get_quote(quote_id))


@router.post("/{quote_id}/actions/{action}", response_model=Quote)
def apply_quote_action(
    quote_id: str,
    action: QuoteAction,
    service: QuoteService = Depends(get_quote_service),
    doctor_id: str | None = Depends(get_doctor_id),
):
    with quote_errors():
        quote = service.apply_action(quote_id, action, doctor_id)
    return conflict_if_none(quote, f"Action {action.value} is not allowed in the current status")


@router.post("/{quote_id}/items", response_model=PlacementResultOut)
def add_quote_item(
    quote_id: str,
    payload: QuoteItemAdd,
    service: QuoteService = Depends(get_quote_service),
):
    with quote_errors():
        quote, outcome = service.add_item(
            quote_id,
            payload.catalog_item_id,
            tooth_num=payload.tooth_num,
            treated_area=payload.treated_area,
        )
    return placement_result(quote, outcome)


@router.post("/{quote_id}/items/move", response_model=Quote)
def move_quote_item(
    quote_id: str,
    payload: QuoteItemMove,
    service: QuoteService = Depends(get_quote_service),
):
    with quote_errors():
        quote = service.reorder_items(quote_id, payload.from_index, payload.to_index)
    return conflict_if_none(quote, "Item position out of range")


@router.patch("/{quote_id}/items/{line_id}", response_model=Quote)
def update_quote_item(
    quote_id: str,
    line_id: str,
    payload: QuoteItemUpdate,
    service: QuoteService = Depends(get_quote_service),
):
    with quote_errors():
        quote = service.update_item(quote_id, line_id, payload)
    if quote is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Quote item not found")
    return quote


@router.delete("/{quote_id}/items/{line_id}", response_model=Quote)
def delete_quote_item(
    quote_id: str,
    line_id: str,
    service: QuoteService = Depends(get_quote_service),
):
    with quote_errors():
        quote = service.remove_item(quote_id, line_id)
    if quote is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Quote item not found")
    return quote


@router.post("/{quote_id}/items/{line_id}/remove-tooth", response_model=PlacementResultOut)
def remove_tooth(
    quote_id: str,
    line_id: str,
    payload: ToothRemove,
    service: QuoteService = Depends(get_quote_service),
):
    with quote_errors():
        quote, outcome = service.remove_tooth(quote_id, line_id, payload.tooth)
    return placement_result(quote, outcome)


@router.post("/{quote_id}/tooth-click", response_model=PlacementResultOut)
def tooth_click(
    quote_id: str,
    payload: ToothClick,
    service: QuoteService = Depends(get_quote_service),
):
    with quote_errors():
        quote, outcome = service.tooth_click(
            quote_id, payload.catalog_item_id, payload.tooth, payload.baseline
        )
    return placement_result(quote, outcome)


@router.post("/{quote_id}/selection", response_model=PlacementResultOut)
def complete_selection(
    quote_id: str,
    payload: SelectionComplete,
    service: QuoteService = Depends(get_quote_service),
):
    with quote_errors():
        quote, outcome = service.complete_selection(
            quote_id,
            payload.catalog_item_id,
            payload.tooth,
            payload.selected_surfaces,
            payload.selected_material,
            payload.baseline,
        )
    return placement_result(quote, outcome)


@router.post("/{quote_id}/full-mouth/{catalog_item_id}", response_model=PlacementResultOut)
def add_full_mouth(
    quote_id: str,
    catalog_item_id: str,
    service: QuoteService = Depends(get_quote_service),
):
    with quote_errors():
        quote, outcome = service.add_item(quote_id, catalog_item_id)
    return placement_result(quote, outcome)


@router.delete("/{quote_id}/full-mouth/{catalog_item_id}", response_model=PlacementResultOut)
def remove_last_full_mouth(
    quote_id: str,
    catalog_item_id: str,
    service: QuoteService = Depends(get_quote_service),
):
    with quote_errors():
        quote, outcome = service.remove_last_full_mouth(quote_id, catalog_item_id)
    return placement_result(quote, outcome)


@router.post("/{quote_id}/sessions/move", response_model=Quote)
def move_in_session(
    quote_id: str,
    payload: SessionMove,
    service: QuoteService = Depends(get_quote_service),
):
    with quote_errors():
        quote = service.move_in_session(
            quote_id, payload.catalog_item_id, payload.treatment_session, payload.direction
        )
    return conflict_if_none(quote, "Treatment cannot be moved")


@router.post("/{quote_id}/sessions/drop", response_model=Quote)
def drop_on_session(
    quote_id: str,
    payload: SessionDrop,
    service: QuoteService = Depends(get_quote_service),
):
    with quote_errors():
        quote = service.drop_on_session(
            quote_id, payload.catalog_item_id, payload.from_session, payload.to_session
        )
    return conflict_if_none(quote, "Treatment cannot be moved")


@router.delete("/{quote_id}/groups/{catalog_item_id}", response_model=Quote)
def remove_group(
    quote_id: str,
    catalog_item_id: str,
    treatment_session: Optional[int] = Query(default=None, ge=1),
    service: QuoteService = Depends(get_quote_service),
):
    with quote_errors():
        quote = service.remove_group(quote_id, catalog_item_id, treatment_session)
    if quote is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Treatment not found")
    return quote


@router.get("/{quote_id}/totals", response_model=QuoteTotals)
def quote_totals(quote_id: str, service: QuoteService = Depends(get_quote_service)):
    with quote_errors():
        return service.totals(quote_id)


@router.get("/{quote_id}/merged", response_model=list[MergedQuoteItem])
def merged_items(quote_id: str, service: QuoteService = Depends(get_quote_service)):
    with quote_errors():
        return service.merged(quote_id)


@router.get("/{quote_id}/sessions", response_model=list[SessionGroup])
def session_groups(quote_id: str, service: QuoteService = Depends(get_quote_service)):
    with quote_errors():
        return service.sessions(quote_id)


@router.post("/{quote_id}/odontogram", response_model=OdontogramState)
def odontogram_state(
    quote_id: str,
    baseline: Optional[OdontogramState] = Body(default=None),
    service: QuoteService = Depends(get_quote_service),
):
    with quote_errors():
        return service.odontogram(quote_id, baseline)


@router.post("/{quote_id}/invoice-summary", response_model=InvoiceSummaryOut)
def invoice_summary(
    quote_id: str,
    invoices: Optional[list[InvoiceRecord]] = Body(default=None),
    service: QuoteService = Depends(get_quote_service),
):
    with quote_errors():
        return service.invoice_summary(quote_id, invoices or [])


@router.post("/{quote_id}/invoices", response_model=InvoiceRecordOut)
def record_invoice(
    quote_id: str,
    payload: InvoiceRecordIn,
    service: QuoteService = Depends(get_quote_service),
    doctor_id: str | None = Depends(get_doctor_id),
):
    if payload.invoice.quote_id != quote_id:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invoice does not belong to this quote",
        )
    with quote_errors():
        quote, summary = service.record_invoice(
            quote_id, payload.invoice, payload.invoices, doctor_id
        )
        if summary.should_complete:
            quote = service.complete_treatment(quote_id, doctor_id) or quote
    return InvoiceRecordOut(quote=quote, summary=summary)


@router.get("/{quote_id}/export", response_model=QuoteExportOut)
def export_quote(quote_id: str, service: QuoteService = Depends(get_quote_service)):
    with quote_errors():
        payload = service.export_payload(quote_id)
    return QuoteExportOut(
        quote=payload.quote, totals=payload.totals, doctor_name=payload.doctor_name
    )

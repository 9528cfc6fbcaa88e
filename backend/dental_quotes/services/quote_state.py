from __future__ import annotations

import enum
from datetime import datetime, timedelta

from dental_quotes.models.quote import Currency, QuoteEventType, QuoteStatus, QuoteType
from dental_quotes.schemas.quote import Quote, QuoteEvent, new_id, utcnow


class QuoteAction(str, enum.Enum):
    close = "close"
    reopen = "reopen"
    accept = "accept"
    reject = "reject"
    revoke_acceptance = "revoke_acceptance"
    revoke_rejection = "revoke_rejection"
    complete = "complete"
    reopen_treatment = "reopen_treatment"


_TRANSITIONS: dict[tuple[QuoteStatus, QuoteAction], tuple[QuoteStatus, QuoteEventType]] = {
    (QuoteStatus.draft, QuoteAction.close): (QuoteStatus.closed, QuoteEventType.closed),
    (QuoteStatus.closed, QuoteAction.reopen): (QuoteStatus.draft, QuoteEventType.reopened),
    (QuoteStatus.closed, QuoteAction.accept): (QuoteStatus.started, QuoteEventType.accepted),
    (QuoteStatus.closed, QuoteAction.reject): (QuoteStatus.rejected, QuoteEventType.rejected),
    (QuoteStatus.started, QuoteAction.revoke_acceptance): (
        QuoteStatus.closed,
        QuoteEventType.acceptance_revoked,
    ),
    (QuoteStatus.rejected, QuoteAction.revoke_rejection): (
        QuoteStatus.closed,
        QuoteEventType.rejection_revoked,
    ),
    (QuoteStatus.started, QuoteAction.complete): (QuoteStatus.completed, QuoteEventType.completed),
    (QuoteStatus.completed, QuoteAction.reopen_treatment): (
        QuoteStatus.started,
        QuoteEventType.completion_revoked,
    ),
}

DELETABLE_STATUSES = frozenset({QuoteStatus.draft, QuoteStatus.closed, QuoteStatus.rejected})

DUPLICATE_NAME_SUFFIX = " (másolat)"


def format_quote_number(prefix: str, counter: int) -> str:
    return f"{prefix}-{counter:04d}"


def make_event(event_type: QuoteEventType, doctor_name: str, **fields) -> QuoteEvent:
    return QuoteEvent(type=event_type, doctor_name=doctor_name, **fields)


def append_event(quote: Quote, event: QuoteEvent) -> Quote:
    return quote.model_copy(update={"events": (*quote.events, event)})


def can_edit(quote: Quote) -> bool:
    return quote.quote_status == QuoteStatus.draft and not quote.is_deleted


def can_delete(quote: Quote) -> bool:
    return quote.quote_status in DELETABLE_STATUSES


def can_reopen(quote: Quote) -> bool:
    return quote.quote_status == QuoteStatus.closed


def next_status(status: QuoteStatus, action: QuoteAction) -> QuoteStatus | None:
    target = _TRANSITIONS.get((status, action))
    return target[0] if target else None


def available_actions(quote: Quote) -> list[QuoteAction]:
    return [action for (status, action) in _TRANSITIONS if status == quote.quote_status]


def transition(
    quote: Quote,
    action: QuoteAction,
    doctor_name: str,
    now: datetime | None = None,
) -> Quote | None:
    target = _TRANSITIONS.get((quote.quote_status, action))
    if target is None:
        return None
    status, event_type = target
    changed_at = now or utcnow()
    return quote.model_copy(
        update={
            "quote_status": status,
            "last_status_change_at": changed_at,
            "events": (*quote.events, make_event(event_type, doctor_name, timestamp=changed_at)),
        }
    )


def soft_delete(quote: Quote, doctor_name: str, now: datetime | None = None) -> Quote | None:
    if quote.is_deleted or not can_delete(quote):
        return None
    changed_at = now or utcnow()
    return quote.model_copy(
        update={
            "is_deleted": True,
            "last_status_change_at": changed_at,
            "events": (
                *quote.events,
                make_event(QuoteEventType.deleted, doctor_name, timestamp=changed_at),
            ),
        }
    )


def restore(quote: Quote) -> Quote | None:
    if not quote.is_deleted:
        return None
    return quote.model_copy(update={"is_deleted": False})


def default_quote_name(patient_name: str | None) -> str:
    if patient_name:
        return f"{patient_name} árajánlata"
    return "Új árajánlat"


def new_quote(
    *,
    quote_id: str,
    quote_number: str,
    patient_id: str,
    doctor_id: str,
    doctor_name: str,
    validity_days: int,
    patient_name: str | None = None,
    quote_type: QuoteType | None = None,
    currency: Currency = Currency.huf,
    now: datetime | None = None,
) -> Quote:
    created = now or utcnow()
    return Quote(
        quote_id=quote_id,
        quote_number=quote_number,
        patient_id=patient_id,
        doctor_id=doctor_id,
        quote_name=default_quote_name(patient_name),
        quote_type=quote_type or QuoteType.itemized,
        created_at=created,
        last_status_change_at=created,
        valid_until=(created + timedelta(days=validity_days)).date(),
        quote_status=QuoteStatus.draft,
        currency=currency,
        events=(make_event(QuoteEventType.created, doctor_name, timestamp=created),),
    )


def duplicate(
    quote: Quote,
    *,
    quote_id: str,
    quote_number: str,
    doctor_name: str,
    validity_days: int,
    now: datetime | None = None,
) -> Quote:
    created = now or utcnow()
    return quote.model_copy(
        update={
            "quote_id": quote_id,
            "quote_number": quote_number,
            "quote_name": f"{quote.quote_name}{DUPLICATE_NAME_SUFFIX}",
            "created_at": created,
            "last_status_change_at": created,
            "valid_until": (created + timedelta(days=validity_days)).date(),
            "quote_status": QuoteStatus.draft,
            "is_deleted": False,
            "items": [item.model_copy(update={"line_id": new_id()}) for item in quote.items],
            "events": (make_event(QuoteEventType.created, doctor_name, timestamp=created),),
        }
    )

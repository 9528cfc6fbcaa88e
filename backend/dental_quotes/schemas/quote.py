from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from dental_quotes.models.quote import (
    Currency,
    DiscountType,
    QuoteEventType,
    QuoteStatus,
    QuoteType,
)
from dental_quotes.schemas.invoice import InvoiceSummaryOut, InvoiceType
from dental_quotes.schemas.odontogram import OdontogramState


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuoteItem(BaseModel):
    line_id: str = Field(default_factory=new_id)
    catalog_item_id: str
    quote_name: str
    quote_unit: str = "db"
    quote_unit_price_gross: int = Field(default=0, ge=0)
    quote_unit_price_currency: Currency = Currency.huf
    quote_qty: int = Field(default=1, ge=1)
    quote_line_discount_type: DiscountType = DiscountType.percent
    quote_line_discount_value: float = Field(default=0, ge=0)
    tooth_num: Optional[str] = None
    treated_area: Optional[str] = None
    selected_surfaces: Optional[list[str]] = None
    selected_material: Optional[str] = None
    resolved_layers: Optional[list[str]] = None
    treatment_session: Optional[int] = Field(default=None, ge=1)

    @property
    def session(self) -> int:
        return self.treatment_session or 1

    @property
    def teeth(self) -> list[str]:
        if not self.tooth_num:
            return []
        return [tooth.strip() for tooth in self.tooth_num.split(",") if tooth.strip()]


class QuoteEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utcnow)
    type: QuoteEventType
    doctor_name: str = ""
    invoice_id: Optional[str] = None
    invoice_number: Optional[str] = None
    invoice_amount: Optional[int] = None
    invoice_currency: Optional[Currency] = None
    invoice_type: Optional[InvoiceType] = None


class Quote(BaseModel):
    quote_id: str
    quote_number: str
    patient_id: str
    doctor_id: str = ""
    quote_name: str = ""
    quote_type: QuoteType = QuoteType.itemized
    created_at: datetime = Field(default_factory=utcnow)
    last_status_change_at: datetime = Field(default_factory=utcnow)
    valid_until: Optional[date] = None
    quote_status: QuoteStatus = QuoteStatus.draft
    is_deleted: bool = False
    currency: Currency = Currency.huf
    items: list[QuoteItem] = Field(default_factory=list)
    global_discount_type: DiscountType = DiscountType.percent
    global_discount_value: float = Field(default=0, ge=0)
    comment_to_patient: str = ""
    internal_notes: str = ""
    expected_treatments: int = Field(default=1, ge=1)
    events: tuple[QuoteEvent, ...] = ()


class QuoteTotals(BaseModel):
    subtotal: int
    line_discounts: int
    global_discount: int
    total: int


class MergedQuoteItem(BaseModel):
    catalog_item_id: str
    quote_name: str
    quote_unit: str
    quote_unit_price_gross: int
    quote_unit_price_currency: Currency
    total_qty: int
    line_total: int
    treated_area_text: str
    quote_line_discount_type: DiscountType
    quote_line_discount_value: float
    treatment_session: int
    items: list[QuoteItem]


class SessionGroup(BaseModel):
    treatment_session: int
    merged: list[MergedQuoteItem]


class QuoteCreate(BaseModel):
    patient_id: str
    patient_name: Optional[str] = None
    quote_type: Optional[QuoteType] = None
    doctor_id: Optional[str] = None


class QuoteUpdate(BaseModel):
    quote_name: Optional[str] = None
    doctor_id: Optional[str] = None
    valid_until: Optional[date] = None
    currency: Optional[Currency] = None
    global_discount_type: Optional[DiscountType] = None
    global_discount_value: Optional[float] = None
    comment_to_patient: Optional[str] = None
    internal_notes: Optional[str] = None
    expected_treatments: Optional[int] = None


class QuoteItemUpdate(BaseModel):
    quote_name: Optional[str] = None
    quote_qty: Optional[int] = None
    quote_unit_price_gross: Optional[int] = None
    quote_line_discount_type: Optional[DiscountType] = None
    quote_line_discount_value: Optional[float] = None
    tooth_num: Optional[str] = None
    treated_area: Optional[str] = None
    treatment_session: Optional[int] = None


class QuoteItemAdd(BaseModel):
    catalog_item_id: str
    tooth_num: Optional[str] = None
    treated_area: Optional[str] = None


class QuoteItemMove(BaseModel):
    from_index: int = Field(ge=0)
    to_index: int = Field(ge=0)


class ToothClick(BaseModel):
    catalog_item_id: str
    tooth: int = Field(ge=11, le=85)
    baseline: Optional[OdontogramState] = None


class SelectionComplete(BaseModel):
    catalog_item_id: str
    tooth: int = Field(ge=11, le=85)
    selected_surfaces: list[str] = Field(default_factory=list)
    selected_material: Optional[str] = None
    baseline: Optional[OdontogramState] = None


class ToothRemove(BaseModel):
    tooth: str


class SelectionRequirementOut(BaseModel):
    needs_surfaces: bool
    max_surfaces: int
    needs_material: bool


class PlacementResultOut(BaseModel):
    quote: Quote
    accepted: bool
    line_id: Optional[str] = None
    notice: Optional[str] = None
    message: Optional[str] = None
    selection: Optional[SelectionRequirementOut] = None


class InvoiceRecordOut(BaseModel):
    quote: Quote
    summary: InvoiceSummaryOut


class QuoteExportOut(BaseModel):
    quote: Quote
    totals: QuoteTotals
    doctor_name: str


class SessionMove(BaseModel):
    catalog_item_id: str
    treatment_session: int = Field(ge=1)
    direction: str = Field(pattern="^(up|down)$")


class SessionDrop(BaseModel):
    catalog_item_id: str
    from_session: int = Field(ge=1)
    to_session: int = Field(ge=1)


class QuoteStatistics(BaseModel):
    total: int
    deleted: int
    draft: int
    closed: int
    started: int
    completed: int
    rejected: int

import enum
from typing import Optional

from pydantic import BaseModel, Field

from dental_quotes.models.quote import Currency


class InvoiceStatus(str, enum.Enum):
    draft = "draft"
    sent = "sent"
    storno = "storno"


class InvoiceType(str, enum.Enum):
    normal = "normal"
    advance = "advance"
    final = "final"


class InvoiceRecord(BaseModel):
    invoice_id: str
    quote_id: str
    status: InvoiceStatus = InvoiceStatus.draft
    total_gross: int = Field(default=0, ge=0)
    currency: Currency = Currency.huf
    invoice_type: InvoiceType = InvoiceType.normal
    invoice_number: Optional[str] = None


class InvoiceSummaryOut(BaseModel):
    total: int
    invoiced_amount: int
    remaining_amount: int
    advance_total: int
    has_active_advance: bool
    can_invoice: bool
    disabled_reason: Optional[str] = None
    should_complete: bool = False


class InvoiceRecordIn(BaseModel):
    invoice: InvoiceRecord
    invoices: list[InvoiceRecord] = Field(default_factory=list)

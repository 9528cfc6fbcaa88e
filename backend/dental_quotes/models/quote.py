from __future__ import annotations

import enum

from sqlalchemy import JSON, Boolean, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from dental_quotes.models.base import Base, TimestampMixin


class QuoteStatus(str, enum.Enum):
    draft = "draft"
    closed = "closed"
    started = "started"
    rejected = "rejected"
    completed = "completed"


class QuoteType(str, enum.Enum):
    itemized = "itemized"
    visual = "visual"


class DiscountType(str, enum.Enum):
    percent = "percent"
    fixed = "fixed"


class Currency(str, enum.Enum):
    huf = "HUF"
    eur = "EUR"


class QuoteEventType(str, enum.Enum):
    created = "created"
    closed = "closed"
    reopened = "reopened"
    accepted = "accepted"
    rejected = "rejected"
    acceptance_revoked = "acceptance_revoked"
    rejection_revoked = "rejection_revoked"
    completed = "completed"
    completion_revoked = "completion_revoked"
    deleted = "deleted"
    invoice_created = "invoice_created"


class QuoteRecord(Base, TimestampMixin):
    __tablename__ = "quotes"

    quote_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    quote_number: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    patient_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    quote_status: Mapped[QuoteStatus] = mapped_column(
        Enum(QuoteStatus, name="quote_status"),
        nullable=False,
        default=QuoteStatus.draft,
    )
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    document: Mapped[dict] = mapped_column(JSON, nullable=False)


class QuoteCounter(Base):
    __tablename__ = "quote_counters"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    prefix: Mapped[str] = mapped_column(String(8), unique=True, nullable=False)
    counter: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deleted_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

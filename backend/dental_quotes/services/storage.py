from __future__ import annotations

from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from dental_quotes.models.quote import QuoteCounter, QuoteRecord
from dental_quotes.schemas.quote import Quote
from dental_quotes.services.quote_state import format_quote_number


class QuoteStore(Protocol):
    def load(self, quote_id: str) -> Quote | None:
        raise NotImplementedError

    def save(self, quote: Quote) -> None:
        raise NotImplementedError

    def list_quotes(
        self, patient_id: str | None = None, include_deleted: bool = False
    ) -> list[Quote]:
        raise NotImplementedError


class QuoteCounters(Protocol):
    def next_quote_number(self) -> str:
        raise NotImplementedError

    def increment_deleted(self) -> int:
        raise NotImplementedError

    def deleted_count(self) -> int:
        raise NotImplementedError


class SqlQuoteStore(QuoteStore):
    def __init__(self, db: Session) -> None:
        self.db = db

    def load(self, quote_id: str) -> Quote | None:
        record = self.db.get(QuoteRecord, quote_id)
        if record is None:
            return None
        return Quote.model_validate(record.document)

    def save(self, quote: Quote) -> None:
        document = quote.model_dump(mode="json")
        record = self.db.get(QuoteRecord, quote.quote_id)
        if record is None:
            record = QuoteRecord(quote_id=quote.quote_id)
        record.quote_number = quote.quote_number
        record.patient_id = quote.patient_id
        record.quote_status = quote.quote_status
        record.is_deleted = quote.is_deleted
        record.document = document
        self.db.add(record)
        self.db.commit()

    def list_quotes(
        self, patient_id: str | None = None, include_deleted: bool = False
    ) -> list[Quote]:
        stmt = select(QuoteRecord)
        if patient_id is not None:
            stmt = stmt.where(QuoteRecord.patient_id == patient_id)
        if not include_deleted:
            stmt = stmt.where(QuoteRecord.is_deleted.is_(False))
        stmt = stmt.order_by(QuoteRecord.created_at.desc(), QuoteRecord.quote_number.desc())
        return [Quote.model_validate(record.document) for record in self.db.scalars(stmt)]


class SqlQuoteCounters(QuoteCounters):
    def __init__(self, db: Session, prefix: str) -> None:
        self.db = db
        self.prefix = prefix

    def _row(self) -> QuoteCounter:
        row = self.db.scalar(
            select(QuoteCounter).where(QuoteCounter.prefix == self.prefix).with_for_update()
        )
        if row is None:
            row = QuoteCounter(prefix=self.prefix, counter=0, deleted_count=0)
            self.db.add(row)
            self.db.flush()
        return row

    def next_quote_number(self) -> str:
        row = self._row()
        row.counter += 1
        number = format_quote_number(self.prefix, row.counter)
        self.db.commit()
        return number

    def increment_deleted(self) -> int:
        row = self._row()
        row.deleted_count += 1
        count = row.deleted_count
        self.db.commit()
        return count

    def deleted_count(self) -> int:
        row = self.db.scalar(select(QuoteCounter).where(QuoteCounter.prefix == self.prefix))
        return row.deleted_count if row else 0

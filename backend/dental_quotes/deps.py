from functools import lru_cache
from pathlib import Path

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from dental_quotes.core.settings import settings
from dental_quotes.db.session import get_db
from dental_quotes.services.catalog import CatalogLookup, StaticCatalog
from dental_quotes.services.quotes import QuoteService
from dental_quotes.services.sequencing import SequencingClient
from dental_quotes.services.storage import SqlQuoteCounters, SqlQuoteStore


@lru_cache
def get_catalog() -> CatalogLookup:
    if not settings.catalog_path:
        return StaticCatalog()
    return StaticCatalog.from_json(Path(settings.catalog_path))


def get_sequencing() -> SequencingClient:
    return SequencingClient(
        settings.sequencing_base_url, timeout=settings.sequencing_timeout_seconds
    )


def get_doctor_id(x_doctor_id: str | None = Header(default=None)) -> str | None:
    if x_doctor_id is None or not x_doctor_id.strip():
        return None
    return x_doctor_id.strip()


def get_quote_service(
    db: Session = Depends(get_db),
    catalog: CatalogLookup = Depends(get_catalog),
    sequencing: SequencingClient = Depends(get_sequencing),
) -> QuoteService:
    return QuoteService(
        store=SqlQuoteStore(db),
        counters=SqlQuoteCounters(db, settings.quote_prefix.strip().upper()),
        catalog=catalog,
        sequencing=sequencing,
        settings=settings,
    )

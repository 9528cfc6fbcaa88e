from __future__ import annotations

import logging
import uuid
from urllib.parse import quote as url_quote

import httpx

logger = logging.getLogger(__name__)

QUOTE_LIMIT_REACHED = "QUOTE_LIMIT_REACHED"


class QuoteLimitReached(RuntimeError):
    pass


def local_id() -> str:
    return uuid.uuid4().hex


class SequencingClient:
    def __init__(
        self,
        base_url: str | None,
        *,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") if base_url else None
        self.timeout = timeout
        self.transport = transport

    def next_quote_id(self, patient_id: str) -> str:
        return self._next_id("quotes", patient_id)

    def next_invoice_id(self, patient_id: str) -> str:
        return self._next_id("invoices", patient_id)

    def _next_id(self, resource: str, patient_id: str) -> str:
        if not self.base_url:
            return local_id()
        path = f"/{resource}/next-id/{url_quote(patient_id, safe='')}"
        try:
            with httpx.Client(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as client:
                response = client.get(path)
            if response.status_code != 200:
                message = _error_message(response)
                if message == QUOTE_LIMIT_REACHED:
                    raise QuoteLimitReached(message)
                raise RuntimeError(message or f"HTTP {response.status_code}")
            payload = response.json()
            value = payload.get("id") if isinstance(payload, dict) else None
            if not value:
                raise RuntimeError("Sequencing response without id")
            return str(value)
        except QuoteLimitReached:
            raise
        except (httpx.HTTPError, RuntimeError, ValueError) as exc:
            fallback = local_id()
            logger.warning(
                "Sequencing %s id for patient %s failed (%s); using local id %s",
                resource,
                patient_id,
                exc,
                fallback,
            )
            return fallback


def _error_message(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict):
        message = payload.get("message")
        return str(message) if message else None
    return None

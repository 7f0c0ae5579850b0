from __future__ import annotations

from typing import Optional

import requests
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from core.exceptions import ExternalCollaboratorError

from . import InvoiceProvider, InvoiceResult, invoice_payload, issue_key


class HttpJsonInvoiceProvider(InvoiceProvider):
    """
    Talks to an invoicing gateway that accepts JSON:

    POST {url}/issue  -> {"invoice_number": "...", "issued_at": "ISO-8601"}
    POST {url}/void   -> 2xx on success

    The gateway owns the tax-authority protocol; this adapter only maps
    our entities onto its request and response.
    """

    name = "http"

    def __init__(self, url: str, api_key: str = "", timeout: int = 15, session: Optional[requests.Session] = None) -> None:
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self, idempotency_key: Optional[str] = None) -> dict:
        headers = {
            "User-Agent": "FreightEngineInvoice/1.0",
            "Accept": "application/json",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def _post(self, path: str, body: dict, idempotency_key: Optional[str] = None) -> requests.Response:
        try:
            resp = self.session.post(
                f"{self.url}/{path}",
                json=body,
                headers=self._headers(idempotency_key),
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise ExternalCollaboratorError(f"Invoice gateway {path} failed: {e}") from e
        return resp

    def issue(self, entity) -> InvoiceResult:
        key = issue_key(entity)
        resp = self._post("issue", invoice_payload(entity), idempotency_key=key)
        try:
            data = resp.json()
            number = str(data["invoice_number"]).strip()
            raw_issued = data.get("issued_at")
            issued_at = parse_datetime(raw_issued) if isinstance(raw_issued, str) else None
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ExternalCollaboratorError(f"Invoice gateway returned an unusable response for {key}: {e}") from e
        if not number:
            raise ExternalCollaboratorError(f"Invoice gateway returned an empty invoice number for {key}")
        return InvoiceResult(invoice_number=number, issued_at=issued_at or timezone.now(), raw=data)

    def void(self, invoice_number: str, reason: str) -> None:
        self._post("void", {"invoice_number": invoice_number, "reason": reason})

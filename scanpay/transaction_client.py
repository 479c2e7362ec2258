"""
HTTP client for the remote Transaction Service and Item Catalog.

Checkout submissions are sent exactly once; idempotent GET lookups are retried
on transport failures.
"""
import logging
from typing import Any, Dict, Optional

import requests
from pydantic import ValidationError as PydanticValidationError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from scanpay.config import Config
from scanpay.exceptions import NetworkFailure, ProductNotFoundError, ServiceError
from scanpay.models import (
    CatalogEnvelope,
    CatalogItem,
    ServerTransaction,
    TransactionEnvelope,
    TransactionRequest,
)

logger = logging.getLogger(__name__)


class TransactionClient:
    """Client for /transactions and /items"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_wait: float = 0.5,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or Config.API_SERVER_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else Config.REQUEST_TIMEOUT_SECONDS
        self.max_retries = max_retries if max_retries is not None else Config.LOOKUP_MAX_RETRIES
        self.retry_wait = retry_wait
        self.session = session or requests.Session()
        self.session.headers.setdefault("Content-Type", "application/json")

    def url(self, *segments: str) -> str:
        path = "/".join(str(s).strip("/") for s in segments)
        return f"{self.base_url}/api/{Config.API_VERSION}/{path}"

    def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            raise NetworkFailure(f"{method} {url} timed out after {self.timeout}s: {e}")
        except requests.exceptions.RequestException as e:
            raise NetworkFailure(f"{method} {url} failed: {e}")

        if not response.ok:
            raise ServiceError(
                f"{method} {url} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ServiceError(f"{method} {url} returned invalid JSON: {e}", status_code=response.status_code)

        if not isinstance(payload, dict):
            raise ServiceError(f"{method} {url} returned unexpected body", status_code=response.status_code)
        return payload

    def _get_with_retry(self, url: str) -> Dict[str, Any]:
        retrying = Retrying(
            retry=retry_if_exception_type(NetworkFailure),
            stop=stop_after_attempt(max(self.max_retries, 1)),
            wait=wait_exponential(multiplier=self.retry_wait, max=10),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                return self._request("GET", url)

    @staticmethod
    def _parse_transaction(payload: Dict[str, Any]) -> ServerTransaction:
        try:
            return TransactionEnvelope.model_validate(payload).data
        except PydanticValidationError as e:
            raise ServiceError(f"malformed transaction response: {e.error_count()} invalid field(s)")

    def create_transaction(self, request: TransactionRequest) -> ServerTransaction:
        """POST /transactions. Never retried: a retry needs a fresh transaction_ref."""
        url = self.url("transactions")
        logger.info(
            f"Submitting transaction {request.transaction_ref}",
            extra={"transaction_ref": request.transaction_ref, "lines": len(request.line_items)},
        )
        payload = self._request("POST", url, json=request.model_dump(mode="json", by_alias=True))
        return self._parse_transaction(payload)

    def get_transaction(self, transaction_id: str) -> ServerTransaction:
        """GET /transactions/{id}"""
        return self._parse_transaction(self._get_with_retry(self.url("transactions", transaction_id)))

    def get_item(self, serial: str) -> CatalogItem:
        """GET /items/{serial}"""
        try:
            payload = self._get_with_retry(self.url("items", serial))
        except ServiceError as e:
            if e.status_code == 404:
                raise ProductNotFoundError(serial)
            raise

        if payload.get("data") is None:
            raise ProductNotFoundError(serial)
        try:
            return CatalogEnvelope.model_validate(payload).data
        except PydanticValidationError as e:
            raise ServiceError(f"malformed item response: {e.error_count()} invalid field(s)")

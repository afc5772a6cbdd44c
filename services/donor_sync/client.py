"""
Async HTTP client for the Mollie v2 REST API.

Covers the customer, mandate and subscription endpoints used by the
reconciliation pipeline. Every failure surfaces as MollieAPIError so callers
only need to handle one provider error type. No retries are attempted.
"""

import time
from datetime import date
from typing import Any, Callable, Dict, List, Optional, TypeVar

import httpx
import structlog

from .log_config import log_api_call
from .models import Amount, RemoteCustomer, RemoteMandate, RemoteSubscription

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://api.mollie.com/v2"

T = TypeVar("T")


class MollieAPIError(Exception):
    """
    Error reported by Mollie, or a transport failure talking to it.

    Mollie error bodies look like
    {"status": 422, "title": "Unprocessable Entity", "detail": "...", "field": "..."}.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        title: Optional[str] = None,
        detail: Optional[str] = None,
        field: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.field = field

    @classmethod
    def from_response(cls, response: httpx.Response) -> "MollieAPIError":
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        title = body.get("title") or response.reason_phrase
        detail = body.get("detail") or response.text[:500]
        field = body.get("field")

        message = f"HTTP {response.status_code} {title}: {detail}"
        if field:
            message += f" (field: {field})"
        return cls(
            message,
            status_code=response.status_code,
            title=title,
            detail=detail,
            field=field,
        )


class MollieClient:
    """
    Thin async wrapper around the Mollie endpoints.

    Use as an async context manager; an externally created httpx.AsyncClient
    may be injected (it is then not closed by this client).
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._headers = headers or {
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
        }
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, config) -> "MollieClient":
        return cls(
            api_key=config.mollie_api_key,
            base_url=config.mollie_api_base_url,
            timeout=config.api_timeout,
            headers=config.get_api_headers(),
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Close the underlying HTTP client if we created it."""
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        start = time.monotonic()

        try:
            response = await self._client.request(
                method, url, params=params, json=json, headers=self._headers
            )
        except httpx.HTTPError as exc:
            logger.error(
                "Mollie request failed",
                method=method,
                url=url,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise MollieAPIError(f"{type(exc).__name__}: {exc}") from exc

        log_api_call(
            logger,
            method=method,
            url=url,
            status_code=response.status_code,
            duration_ms=(time.monotonic() - start) * 1000,
        )

        if response.status_code >= 400:
            raise MollieAPIError.from_response(response)

        if response.status_code == 204 or not response.content:
            return None

        try:
            return response.json()
        except ValueError as exc:
            raise MollieAPIError(
                f"Invalid JSON response: {exc}", status_code=response.status_code
            ) from exc

    @staticmethod
    def _embedded(body: Any, name: str) -> List[Any]:
        """Items of a HAL list response; a missing or null `_embedded` means none."""
        if body is None:
            return []
        if not isinstance(body, dict):
            raise MollieAPIError(f"Malformed {name} response: expected an object")
        embedded = body.get("_embedded") or {}
        if not isinstance(embedded, dict):
            raise MollieAPIError(f"Malformed {name} response: _embedded is not an object")
        items = embedded.get(name) or []
        if not isinstance(items, list):
            raise MollieAPIError(f"Malformed {name} response: {name} is not a list")
        return items

    @classmethod
    def _items(cls, body: Any, name: str, build: Callable[[Dict[str, Any]], T]) -> List[T]:
        try:
            return [build(item) for item in cls._embedded(body, name)]
        except (KeyError, TypeError, AttributeError) as exc:
            raise MollieAPIError(f"Malformed {name} response: {exc!r}") from exc

    @staticmethod
    def _resource(body: Any, build: Callable[[Dict[str, Any]], T]) -> T:
        if not isinstance(body, dict) or "id" not in body:
            raise MollieAPIError("Mollie returned no resource for a create call")
        try:
            return build(body)
        except (KeyError, TypeError, AttributeError) as exc:
            raise MollieAPIError(f"Malformed resource response: {exc!r}") from exc

    # Customers

    async def list_customers(self, limit: int = 250) -> List[RemoteCustomer]:
        """List the first page of customers, newest first."""
        body = await self._request("GET", "/customers", params={"limit": limit})
        return self._items(body, "customers", RemoteCustomer.from_api)

    async def create_customer(self, name: str, email: Optional[str] = None) -> RemoteCustomer:
        payload: Dict[str, Any] = {"name": name}
        if email:
            payload["email"] = email
        body = await self._request("POST", "/customers", json=payload)
        return self._resource(body, RemoteCustomer.from_api)

    async def delete_customer(self, customer_id: str) -> None:
        await self._request("DELETE", f"/customers/{customer_id}")

    # Mandates

    async def list_mandates(self, customer_id: str) -> List[RemoteMandate]:
        body = await self._request("GET", f"/customers/{customer_id}/mandates")
        return self._items(
            body, "mandates", lambda item: RemoteMandate.from_api(item, customer_id)
        )

    async def create_mandate(
        self,
        customer_id: str,
        consumer_name: str,
        consumer_account: str,
        signature_date: Optional[date] = None,
        method: str = "directdebit",
    ) -> RemoteMandate:
        """Create a SEPA direct-debit mandate (signature date as YYYY-MM-DD)."""
        payload: Dict[str, Any] = {
            "method": method,
            "consumerName": consumer_name,
            "consumerAccount": consumer_account,
        }
        if signature_date is not None:
            payload["signatureDate"] = signature_date.isoformat()
        body = await self._request("POST", f"/customers/{customer_id}/mandates", json=payload)
        return self._resource(body, lambda item: RemoteMandate.from_api(item, customer_id))

    # Subscriptions

    async def list_subscriptions(self, customer_id: str) -> List[RemoteSubscription]:
        body = await self._request("GET", f"/customers/{customer_id}/subscriptions")
        return self._items(
            body, "subscriptions", lambda item: RemoteSubscription.from_api(item, customer_id)
        )

    async def create_subscription(
        self,
        customer_id: str,
        amount: Amount,
        interval: str,
        description: str = "",
        webhook_url: str = "",
    ) -> RemoteSubscription:
        payload: Dict[str, Any] = {
            "amount": amount.to_api(),
            "interval": interval,
        }
        if description:
            payload["description"] = description
        if webhook_url:
            payload["webhookUrl"] = webhook_url
        body = await self._request(
            "POST", f"/customers/{customer_id}/subscriptions", json=payload
        )
        return self._resource(
            body, lambda item: RemoteSubscription.from_api(item, customer_id)
        )

"""
Base payment client implementing shared concerns: http, retry, logging.

Concrete gateways subclass and implement signing, verification and payloads.
"""
from __future__ import annotations

from typing import Any, Callable, Optional
from contextlib import asynccontextmanager

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from core.settings import payment_settings
from application.dtos.payments import (
    CheckoutSession,
    GatewayCheckoutRequest,
    GatewayRefund,
    GatewayRefundRequest,
)
from application.ports.payment_gateway import PaymentGateway
from domain.payment.notification import GatewayNotification
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
)


logger = get_logger(__name__)


class BasePaymentClient(PaymentGateway):
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or payment_settings.timeouts.model_dump()
        self._retry_cfg = retry or {
            "max": payment_settings.retry.max,
            "base": payment_settings.retry.base_backoff,
        }
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
            timeout=self._timeouts_cfg["total"],
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts, transport=self._transport)
        try:
            yield self._client
        finally:
            # Keep open for reuse; explicit aclose() will close.
            ...

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _retry(self, fn: Callable[[], Any]):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
            reraise=True,
        ):
            with attempt:
                return await fn()

    async def _post_json(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST JSON with retries on transport errors; gateway error bodies are returned, not raised."""
        async def _send() -> httpx.Response:
            async with self.client() as http:
                return await http.post(url, json=payload)

        try:
            response = await self._retry(_send)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            self._log("gateway_http_failed", url=url, error=str(exc))
            raise PaymentRecoverableError(str(exc), provider=self.provider) from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise PaymentProviderError(
                f"Invalid response from {self.provider} (HTTP {response.status_code})",
                provider=self.provider,
            ) from exc
        if not isinstance(body, dict):
            raise PaymentProviderError(f"Unexpected response from {self.provider}", provider=self.provider)
        self._log("gateway_http_response", url=url, status_code=response.status_code, result_code=body.get("resultCode"))
        return body

    # Default implementations raise to force override where needed
    def verify_notification(self, notification: GatewayNotification) -> None:  # type: ignore[override]
        raise NotImplementedError

    async def create_checkout(self, req: GatewayCheckoutRequest) -> CheckoutSession:  # type: ignore[override]
        raise NotImplementedError

    async def refund(self, req: GatewayRefundRequest) -> GatewayRefund:  # type: ignore[override]
        raise NotImplementedError

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )

"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from application.dtos.payments import (
    CheckoutSession,
    GatewayCheckoutRequest,
    GatewayRefund,
    GatewayRefundRequest,
)
from domain.payment.notification import GatewayNotification


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for VNPay / MoMo.

    ``verify_notification`` is pure CPU work and raises ``AuthenticityError``;
    the other calls may perform IO.
    """

    provider: str

    def verify_notification(self, notification: GatewayNotification) -> None: ...

    async def create_checkout(self, req: GatewayCheckoutRequest) -> CheckoutSession: ...

    async def refund(self, req: GatewayRefundRequest) -> GatewayRefund: ...

    async def aclose(self) -> None: ...

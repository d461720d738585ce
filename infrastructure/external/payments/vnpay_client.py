"""
VNPay adapter: signed ``vpcpay.html`` checkout URLs and return/IPN verification.

VNPay has no server-side create call; the checkout URL is built and signed
locally. Refunds are not automated and are flagged for manual handling in
the merchant portal.
"""
from __future__ import annotations

import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional
from urllib.parse import quote

from application.dtos.payments import (
    CheckoutSession,
    GatewayCheckoutRequest,
    GatewayRefund,
    GatewayRefundRequest,
)
from core.settings import VNPaySettings, payment_settings
from domain.common.exceptions import AuthenticityError
from domain.payment.notification import GatewayNotification, VNPayNotification
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import PaymentProviderError
from shared.codes.payment_codes import GatewaySource, is_ascii_digits


HASH_FIELDS = frozenset({"vnp_SecureHash", "vnp_SecureHashType"})
REQUIRED_FIELDS = ("vnp_TxnRef", "vnp_Amount", "vnp_ResponseCode", "vnp_SecureHash")

# VNPay timestamps are local Vietnam time (GMT+7)
VN_TZ = timezone(timedelta(hours=7))
DATE_FORMAT = "%Y%m%d%H%M%S"


def _encode(value: Any) -> str:
    # encodeURIComponent semantics, spaces as '+'
    return quote(str(value), safe="-_.!~*'()").replace("%20", "+")


def canonical_query(params: Mapping[str, Any]) -> str:
    """Key-sorted ``k=v&...`` over the ``vnp_`` fields, hash fields excluded."""
    items = sorted(
        (key, value)
        for key, value in params.items()
        if key.startswith("vnp_") and key not in HASH_FIELDS and value is not None
    )
    return "&".join(f"{_encode(key)}={_encode(value)}" for key, value in items)


def sign(params: Mapping[str, Any], secret: str) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        canonical_query(params).encode("utf-8"),
        hashlib.sha512,
    ).hexdigest()


def format_vn_date(at: datetime) -> str:
    if at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)
    return at.astimezone(VN_TZ).strftime(DATE_FORMAT)


def to_vnpay_amount(amount: Decimal) -> int:
    """VNPay amounts are sent in 1/100 VND."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1")))


class VNPayClient(BasePaymentClient):
    provider = GatewaySource.VNPAY.value

    def __init__(self, config: Optional[VNPaySettings] = None, **kwargs):
        super().__init__(**kwargs)
        self.config = config or payment_settings.vnpay

    def verify_notification(self, notification: GatewayNotification) -> None:  # type: ignore[override]
        if not isinstance(notification, VNPayNotification):
            raise AuthenticityError(self.provider, "not a VNPay notification")
        if not self.config.hash_secret:
            raise AuthenticityError(self.provider, "VNPAY__HASH_SECRET is not configured")

        missing = [key for key in REQUIRED_FIELDS if notification.get(key) is None]
        if missing:
            raise AuthenticityError(self.provider, f"missing fields: {', '.join(missing)}")
        if not is_ascii_digits(notification.raw_amount):
            raise AuthenticityError(self.provider, "vnp_Amount is not numeric")

        expected = sign(notification.params, self.config.hash_secret)
        received = (notification.secure_hash or "").lower()
        if not hmac.compare_digest(expected, received):
            raise AuthenticityError(self.provider, "secure hash mismatch")

    def _ensure_configured(self) -> None:
        if not (self.config.tmn_code and self.config.hash_secret):
            raise PaymentProviderError("VNPay configuration is missing", provider=self.provider)
        if not self.config.return_url:
            raise PaymentProviderError("VNPay return URL is not configured", provider=self.provider)

    def build_checkout_params(self, req: GatewayCheckoutRequest) -> dict[str, str]:
        expires_at = req.created_at + timedelta(minutes=self.config.expiration_minutes)
        return {
            "vnp_Version": self.config.version,
            "vnp_Command": self.config.command,
            "vnp_TmnCode": self.config.tmn_code or "",
            "vnp_Amount": str(to_vnpay_amount(req.amount)),
            "vnp_CurrCode": self.config.currency,
            "vnp_TxnRef": req.transaction_ref,
            "vnp_OrderInfo": req.order_info,
            "vnp_OrderType": self.config.order_type,
            "vnp_Locale": self.config.locale,
            "vnp_ReturnUrl": self.config.return_url or "",
            "vnp_IpAddr": req.client_ip or "127.0.0.1",
            "vnp_CreateDate": format_vn_date(req.created_at),
            "vnp_ExpireDate": format_vn_date(expires_at),
        }

    async def create_checkout(self, req: GatewayCheckoutRequest) -> CheckoutSession:  # type: ignore[override]
        self._ensure_configured()
        params = self.build_checkout_params(req)
        secure_hash = sign(params, self.config.hash_secret)
        url = f"{self.config.api_url}?{canonical_query(params)}&vnp_SecureHash={secure_hash}"
        self._log("vnpay_checkout_url_built", order_code=req.order_code, transaction_ref=req.transaction_ref)
        return CheckoutSession(
            gateway=self.provider,
            payment_url=url,
            transaction_ref=req.transaction_ref,
            expires_at=req.created_at + timedelta(minutes=self.config.expiration_minutes),
            raw={**params, "vnp_SecureHash": secure_hash},
        )

    async def refund(self, req: GatewayRefundRequest) -> GatewayRefund:  # type: ignore[override]
        # No refund API call; the merchant completes it in the VNPay portal.
        self._log("vnpay_refund_manual", order_code=req.order_code, amount=str(req.amount))
        return GatewayRefund(gateway=self.provider, requires_manual_action=True)

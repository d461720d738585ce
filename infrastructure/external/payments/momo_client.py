"""
MoMo adapter: captureWallet checkout, refunds and return/IPN verification.

Every MoMo request and notification is signed with HMAC-SHA256 over a fixed,
alphabetical ``k=v&...`` key list; missing values sign as empty strings.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional

from application.dtos.payments import (
    CheckoutSession,
    GatewayCheckoutRequest,
    GatewayRefund,
    GatewayRefundRequest,
)
from core.settings import MoMoSettings, payment_settings
from domain.common.exceptions import AuthenticityError
from domain.payment.notification import GatewayNotification, MoMoNotification
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import PaymentProviderError
from shared.codes.payment_codes import (
    CodeGroup,
    GatewaySource,
    is_ascii_digits,
    lookup_reason,
    parse_numeric_id,
)


NOTIFICATION_SIGNATURE_KEYS = (
    "accessKey", "amount", "extraData", "message", "orderId", "orderInfo",
    "orderType", "partnerCode", "payType", "requestId", "responseTime",
    "resultCode", "transId",
)
CREATE_SIGNATURE_KEYS = (
    "accessKey", "amount", "extraData", "ipnUrl", "orderId", "orderInfo",
    "partnerCode", "redirectUrl", "requestId", "requestType",
)
REFUND_SIGNATURE_KEYS = (
    "accessKey", "amount", "description", "orderId", "partnerCode",
    "requestId", "transId",
)


def raw_signature(values: Mapping[str, Any], keys: tuple[str, ...]) -> str:
    parts = []
    for key in keys:
        value = values.get(key)
        parts.append(f"{key}={'' if value is None else value}")
    return "&".join(parts)


def sign(values: Mapping[str, Any], keys: tuple[str, ...], secret: str) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        raw_signature(values, keys).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def encode_extra_data(payload: dict[str, Any]) -> str:
    return base64.b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8")).decode("ascii")


def to_vnd(amount: Decimal) -> int:
    return int(Decimal(str(amount)).quantize(Decimal("1")))


def _timestamp_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def _trans_id(value: Optional[str]) -> Any:
    # MoMo expects transId as a JSON number
    numeric = parse_numeric_id(value)
    return value if numeric is None else numeric


class MoMoClient(BasePaymentClient):
    provider = GatewaySource.MOMO.value

    def __init__(self, config: Optional[MoMoSettings] = None, **kwargs):
        super().__init__(**kwargs)
        self.config = config or payment_settings.momo

    # ---- verification ---------------------------------------------------

    def verify_notification(self, notification: GatewayNotification) -> None:  # type: ignore[override]
        if not isinstance(notification, MoMoNotification):
            raise AuthenticityError(self.provider, "not a MoMo notification")
        if not self.config.secret_key:
            raise AuthenticityError(self.provider, "MOMO__SECRET_KEY is not configured")

        if notification.order_id is None:
            raise AuthenticityError(self.provider, "missing orderId")
        if not is_ascii_digits(notification.raw_amount):
            raise AuthenticityError(self.provider, "amount is not numeric")
        if not is_ascii_digits(notification.result_code):
            raise AuthenticityError(self.provider, "resultCode is not numeric")
        received = notification.signature
        if not received:
            raise AuthenticityError(self.provider, "missing signature")
        if self.config.partner_code and notification.partner_code != self.config.partner_code:
            raise AuthenticityError(self.provider, "partnerCode mismatch")

        values = dict(notification.params)
        values.setdefault("accessKey", self.config.access_key or "")
        expected = sign(values, NOTIFICATION_SIGNATURE_KEYS, self.config.secret_key)
        if not hmac.compare_digest(expected, received.lower()):
            raise AuthenticityError(self.provider, "signature mismatch")

    # ---- outbound -------------------------------------------------------

    def _ensure_configured(self) -> None:
        cfg = self.config
        if not (cfg.partner_code and cfg.access_key and cfg.secret_key):
            raise PaymentProviderError("MoMo configuration is missing", provider=self.provider)
        if not (cfg.return_url and cfg.notify_url):
            raise PaymentProviderError("MoMo return or notify URL is not configured", provider=self.provider)

    def build_checkout_payload(self, req: GatewayCheckoutRequest) -> dict[str, Any]:
        cfg = self.config
        payload: dict[str, Any] = {
            "partnerCode": cfg.partner_code,
            "partnerName": cfg.partner_name,
            "storeId": cfg.partner_code,
            "requestId": req.transaction_ref,
            "amount": str(to_vnd(req.amount)),
            "orderId": req.order_code,
            "orderInfo": req.order_info,
            "redirectUrl": cfg.return_url,
            "ipnUrl": cfg.notify_url,
            "lang": cfg.lang,
            "extraData": encode_extra_data({
                "orderId": req.order_id,
                "orderCode": req.order_code,
                "userId": req.user_id,
            }),
            "requestType": cfg.request_type,
            "autoCapture": True,
            "accessKey": cfg.access_key,
        }
        payload["signature"] = sign(payload, CREATE_SIGNATURE_KEYS, cfg.secret_key or "")
        return payload

    async def create_checkout(self, req: GatewayCheckoutRequest) -> CheckoutSession:  # type: ignore[override]
        self._ensure_configured()
        payload = self.build_checkout_payload(req)
        body = await self._post_json(self.config.endpoint, payload)

        result_code = body.get("resultCode")
        if str(result_code) != "0" or not body.get("payUrl"):
            reason, _ = lookup_reason(GatewaySource.MOMO, result_code if result_code is not None else "99")
            self._log("momo_checkout_rejected", order_code=req.order_code, result_code=result_code)
            raise PaymentProviderError(
                body.get("message") or reason,
                provider=self.provider,
                provider_code=None if result_code is None else str(result_code),
            )
        return CheckoutSession(
            gateway=self.provider,
            payment_url=body["payUrl"],
            transaction_ref=req.transaction_ref,
            deeplink=body.get("deeplink"),
            qr_code_url=body.get("qrCodeUrl"),
            expires_at=req.created_at + timedelta(minutes=self.config.link_lifetime_minutes),
            raw=body,
        )

    def build_refund_payload(self, req: GatewayRefundRequest, timestamp: Optional[int] = None) -> dict[str, Any]:
        cfg = self.config
        ts = timestamp if timestamp is not None else _timestamp_ms()
        payload: dict[str, Any] = {
            "partnerCode": cfg.partner_code,
            "orderId": f"{req.order_code}-refund-{ts}",
            "requestId": f"refund-{req.order_code}-{ts}",
            "amount": to_vnd(req.amount),
            "transId": _trans_id(req.transaction_id),
            "lang": cfg.lang,
            "description": req.description,
            "accessKey": cfg.access_key,
        }
        payload["signature"] = sign(payload, REFUND_SIGNATURE_KEYS, cfg.secret_key or "")
        return payload

    async def refund(self, req: GatewayRefundRequest) -> GatewayRefund:  # type: ignore[override]
        self._ensure_configured()
        if not req.transaction_id:
            raise PaymentProviderError(
                "MoMo transaction id is missing for this order",
                provider=self.provider,
                details={"order_code": req.order_code},
            )
        payload = self.build_refund_payload(req)
        body = await self._post_json(self.config.refund_endpoint, payload)

        result_code = body.get("resultCode")
        if str(result_code) != "0":
            reason, _ = lookup_reason(
                GatewaySource.MOMO,
                result_code if result_code is not None else "99",
                CodeGroup.REFUND,
            )
            self._log("momo_refund_rejected", order_code=req.order_code, result_code=result_code)
            raise PaymentProviderError(
                body.get("message") or reason,
                provider=self.provider,
                provider_code=None if result_code is None else str(result_code),
            )
        return GatewayRefund(
            gateway=self.provider,
            refund_ref=str(body.get("transId") or payload["requestId"]),
            raw=body,
        )

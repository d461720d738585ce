"""
Inbound gateway notifications and the classifier that tags them.

A raw parameter map becomes one of two concrete shapes, ``VNPayNotification``
or ``MoMoNotification``; everything downstream works on those shapes instead
of sniffing an untyped dict.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar, Mapping, Optional, Union

from domain.common.exceptions import ClassificationError
from shared.codes.payment_codes import GatewaySource


class DeliveryMode(str, Enum):
    """Decided by the route a request arrived on, never by the payload."""

    REDIRECT = "redirect"
    WEBHOOK = "webhook"


VNPAY_MARKERS = ("vnp_ResponseCode", "vnp_TxnRef")
MOMO_MARKERS = ("resultCode", "partnerCode")


def normalize_params(params: Mapping[str, Any]) -> Mapping[str, str]:
    """Stringify values (MoMo IPN bodies carry JSON numbers) and drop ``None``."""
    return MappingProxyType({
        str(key): str(value) for key, value in (params or {}).items() if value is not None
    })


def _present(params: Mapping[str, Any], key: str) -> bool:
    value = params.get(key)
    return value is not None and str(value) != ""


def classify(params: Mapping[str, Any]) -> Optional[GatewaySource]:
    """Sniff which gateway produced ``params``; ``None`` when neither matches.

    VNPay markers are checked first because they are the more specific ones.
    """
    if any(_present(params, key) for key in VNPAY_MARKERS):
        return GatewaySource.VNPAY
    if any(_present(params, key) for key in MOMO_MARKERS):
        return GatewaySource.MOMO
    return None


@dataclass(frozen=True)
class VNPayNotification:
    gateway: ClassVar[GatewaySource] = GatewaySource.VNPAY

    params: Mapping[str, str]
    delivery_mode: DeliveryMode = DeliveryMode.REDIRECT

    def get(self, key: str) -> Optional[str]:
        value = self.params.get(key)
        return value if value not in (None, "") else None

    @property
    def txn_ref(self) -> Optional[str]:
        return self.get("vnp_TxnRef")

    @property
    def response_code(self) -> Optional[str]:
        return self.get("vnp_ResponseCode")

    @property
    def transaction_status(self) -> Optional[str]:
        return self.get("vnp_TransactionStatus")

    @property
    def transaction_no(self) -> Optional[str]:
        return self.get("vnp_TransactionNo")

    @property
    def raw_amount(self) -> Optional[str]:
        return self.get("vnp_Amount")

    @property
    def secure_hash(self) -> Optional[str]:
        return self.get("vnp_SecureHash")


@dataclass(frozen=True)
class MoMoNotification:
    gateway: ClassVar[GatewaySource] = GatewaySource.MOMO

    params: Mapping[str, str]
    delivery_mode: DeliveryMode = DeliveryMode.REDIRECT

    def get(self, key: str) -> Optional[str]:
        value = self.params.get(key)
        return value if value not in (None, "") else None

    @property
    def order_id(self) -> Optional[str]:
        return self.get("orderId")

    @property
    def order_code(self) -> Optional[str]:
        return self.get("orderCode")

    @property
    def request_id(self) -> Optional[str]:
        return self.get("requestId")

    @property
    def result_code(self) -> Optional[str]:
        return self.get("resultCode")

    @property
    def raw_amount(self) -> Optional[str]:
        return self.get("amount")

    @property
    def message(self) -> Optional[str]:
        return self.get("message")

    @property
    def extra_data(self) -> Optional[str]:
        return self.get("extraData")

    @property
    def trans_id(self) -> Optional[str]:
        return self.get("transId")

    @property
    def partner_code(self) -> Optional[str]:
        return self.get("partnerCode")

    @property
    def signature(self) -> Optional[str]:
        return self.get("signature") or self.get("Signature")


GatewayNotification = Union[VNPayNotification, MoMoNotification]


def parse_notification(
    params: Mapping[str, Any],
    delivery_mode: DeliveryMode,
    expected: Optional[GatewaySource] = None,
) -> GatewayNotification:
    """Classify ``params`` and wrap them in the matching notification shape.

    Raises ``ClassificationError`` when no gateway matches, or when a
    gateway-specific route receives the other gateway's payload.
    """
    normalized = normalize_params(params)
    source = classify(normalized)
    if source is None or (expected is not None and source is not expected):
        raise ClassificationError(sorted(normalized.keys()))
    if source is GatewaySource.VNPAY:
        return VNPayNotification(params=normalized, delivery_mode=delivery_mode)
    return MoMoNotification(params=normalized, delivery_mode=delivery_mode)

"""
Outcome resolution: gateway codes in, canonical outcome out.

``resolve_vnpay`` and ``resolve_momo`` are total, side-effect free functions
over the two notification shapes. Amounts are exposed, not checked; the order
state machine compares them against the order record.
"""
from __future__ import annotations

import base64
import json
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Union

from domain.payment.notification import (
    DeliveryMode,
    GatewayNotification,
    MoMoNotification,
    VNPayNotification,
    normalize_params,
)
from shared.codes.payment_codes import (
    MOMO_CONFIRMED_SUCCESS_CODES,
    MOMO_SUCCESS_CODES,
    VNPAY_SUCCESS_CODE,
    CodeGroup,
    GatewaySource,
    Outcome,
    lookup_reason,
    normalize_gateway,
    parse_numeric_id,
)


_GATEWAY_SUFFIX = re.compile(r"-(vnpay|momo)-[^-]+$", re.IGNORECASE)


@dataclass(frozen=True)
class ResolvedOutcome:
    gateway: GatewaySource
    outcome: Outcome
    raw_code: Optional[str]
    reason_message: Optional[str]
    order_code: Optional[str] = None
    order_id: Optional[int] = None
    amount: Optional[Decimal] = None
    transaction_id: Optional[str] = None
    # our own checkout reference (vnp_TxnRef / MoMo requestId)
    transaction_ref: Optional[str] = None

    @property
    def is_definitive(self) -> bool:
        return self.outcome in (Outcome.SUCCESS, Outcome.FAILED)


@dataclass(frozen=True)
class ExtraDataDecodeError:
    """Soft failure: ``extraData`` was present but not base64 JSON."""

    reason: str


DecodedExtra = Union[dict, ExtraDataDecodeError, None]


def strip_suffix(order_ref: str) -> str:
    """``ABC123-MoMo-xyz789`` -> ``ABC123``; references without a suffix pass through."""
    return _GATEWAY_SUFFIX.sub("", order_ref or "")


def decode_extra_data(raw: Optional[str]) -> DecodedExtra:
    """Decode base64 JSON ``extraData``.

    Returns the decoded object, ``None`` when nothing was sent, or an
    ``ExtraDataDecodeError`` value. Never raises.
    """
    if not raw:
        return None
    padded = raw + "=" * (-len(raw) % 4)
    try:
        decoded = json.loads(base64.b64decode(padded).decode("utf-8"))
    except ValueError as exc:  # binascii.Error and UnicodeDecodeError are ValueErrors
        return ExtraDataDecodeError(str(exc))
    if not isinstance(decoded, dict):
        return ExtraDataDecodeError("extraData is not a JSON object")
    return decoded


def _decimal(value: Optional[str]) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        return None


def resolve_vnpay(notification: VNPayNotification) -> ResolvedOutcome:
    response_code = notification.response_code
    status = notification.transaction_status

    if response_code is None and status is None:
        outcome, reason = Outcome.UNKNOWN, None
    elif VNPAY_SUCCESS_CODE in (response_code, status):
        outcome = Outcome.SUCCESS
        reason, _ = lookup_reason(GatewaySource.VNPAY, VNPAY_SUCCESS_CODE)
    elif response_code is not None:
        outcome = Outcome.FAILED
        reason, _ = lookup_reason(GatewaySource.VNPAY, response_code)
    else:
        outcome = Outcome.FAILED
        reason, _ = lookup_reason(GatewaySource.VNPAY, status, CodeGroup.TRANSACTION_STATUS)

    txn_ref = notification.txn_ref
    raw_amount = _decimal(notification.raw_amount)
    return ResolvedOutcome(
        gateway=GatewaySource.VNPAY,
        outcome=outcome,
        raw_code=response_code or status,
        reason_message=reason,
        order_code=strip_suffix(txn_ref) if txn_ref else None,
        # vnp_Amount is sent in 1/100 VND
        amount=raw_amount / 100 if raw_amount is not None else None,
        transaction_id=notification.transaction_no,
        transaction_ref=txn_ref,
    )


def momo_identity(notification: MoMoNotification) -> tuple[Optional[str], Optional[int]]:
    """Order identity from a MoMo payload: direct params, then extraData.

    MoMo's own ``orderId`` carries our order code (possibly suffixed), so a
    non-numeric value is used as a last-resort order code rather than an id.
    """
    order_code = notification.order_code
    order_id = parse_numeric_id(notification.order_id)

    if order_code is None or order_id is None:
        extra = decode_extra_data(notification.extra_data)
        if isinstance(extra, dict):
            if order_code is None and extra.get("orderCode"):
                order_code = str(extra["orderCode"])
            if order_id is None:
                order_id = parse_numeric_id(extra.get("orderId"))

    momo_order_ref = notification.order_id
    if order_code is None and momo_order_ref and parse_numeric_id(momo_order_ref) is None:
        order_code = strip_suffix(momo_order_ref)
    return order_code, order_id


def resolve_momo(notification: MoMoNotification) -> ResolvedOutcome:
    result_code = notification.result_code

    if result_code is None:
        outcome, reason = Outcome.UNKNOWN, None
    elif result_code in MOMO_SUCCESS_CODES:
        outcome = Outcome.SUCCESS
        reason, _ = lookup_reason(GatewaySource.MOMO, result_code)
    else:
        outcome = Outcome.FAILED
        reason, _ = lookup_reason(GatewaySource.MOMO, result_code)

    order_code, order_id = momo_identity(notification)
    return ResolvedOutcome(
        gateway=GatewaySource.MOMO,
        outcome=outcome,
        raw_code=result_code,
        reason_message=reason,
        order_code=order_code,
        order_id=order_id,
        amount=_decimal(notification.raw_amount),
        transaction_id=notification.trans_id,
        transaction_ref=notification.request_id,
    )


def resolve_notification(notification: GatewayNotification) -> ResolvedOutcome:
    if isinstance(notification, VNPayNotification):
        return resolve_vnpay(notification)
    return resolve_momo(notification)


def resolve(gateway: Union[str, GatewaySource], params: Mapping[str, Any]) -> ResolvedOutcome:
    """Resolve raw ``params`` for an already-known gateway (``"bank"``/``"ewallet"`` accepted)."""
    source = normalize_gateway(gateway)
    normalized = normalize_params(params)
    if source is GatewaySource.VNPAY:
        return resolve_vnpay(VNPayNotification(params=normalized, delivery_mode=DeliveryMode.REDIRECT))
    return resolve_momo(MoMoNotification(params=normalized, delivery_mode=DeliveryMode.REDIRECT))


def is_payment_successful(params: Mapping[str, Any]) -> bool:
    """View-only hint for a results page reached without reconciliation.

    Must never authorise a state change. Unlike ``resolve_momo`` it also
    accepts MoMo ``9000``.
    """
    normalized = normalize_params(params)
    if VNPAY_SUCCESS_CODE in (normalized.get("vnp_ResponseCode"), normalized.get("vnp_TransactionStatus")):
        return True
    return normalized.get("resultCode") in MOMO_CONFIRMED_SUCCESS_CODES

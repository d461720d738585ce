"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.types import condecimal


class CreateCheckoutRequest(BaseModel):
    """Body of ``POST /payments/{gateway}/create``."""

    order_id: int = Field(alias="orderId", gt=0)

    model_config = ConfigDict(populate_by_name=True)


class GatewayCheckoutRequest(BaseModel):
    """What a gateway adapter needs to start a checkout."""

    order_id: int
    order_code: str
    user_id: Optional[int] = None
    amount: Decimal
    transaction_ref: str
    order_info: str
    client_ip: Optional[str] = None
    created_at: datetime


class CheckoutSession(BaseModel):
    gateway: str
    payment_url: str
    transaction_ref: str
    deeplink: Optional[str] = None
    qr_code_url: Optional[str] = None
    expires_at: Optional[datetime] = None
    raw: Optional[dict[str, Any]] = None


class CheckoutResponse(BaseModel):
    order_id: int = Field(serialization_alias="orderId")
    order_code: str = Field(serialization_alias="orderCode")
    gateway: str
    amount: Decimal
    payment_url: str = Field(serialization_alias="paymentUrl")
    transaction_ref: str = Field(serialization_alias="transactionRef")
    deeplink: Optional[str] = None
    qr_code_url: Optional[str] = Field(default=None, serialization_alias="qrCodeUrl")
    expires_at: Optional[datetime] = Field(default=None, serialization_alias="expiresAt")
    # an earlier, still-valid checkout link was returned instead of a new one
    reused: bool = False


class RefundRequest(BaseModel):
    """Body of the admin refund endpoint; amount defaults to what is left."""

    amount: Optional[condecimal(gt=0)] = None  # type: ignore[valid-type]
    reason: Optional[str] = Field(default=None, max_length=500)


class GatewayRefundRequest(BaseModel):
    order_id: int
    order_code: str
    amount: Decimal
    transaction_id: Optional[str] = None
    description: str


class GatewayRefund(BaseModel):
    gateway: str
    refund_ref: Optional[str] = None
    requires_manual_action: bool = False
    raw: Optional[dict[str, Any]] = None


class RefundResult(BaseModel):
    order_id: int = Field(serialization_alias="orderId")
    order_code: str = Field(serialization_alias="orderCode")
    gateway: Optional[str] = None
    refund_amount: Decimal = Field(serialization_alias="refundAmount")
    total_refunded: Decimal = Field(serialization_alias="totalRefunded")
    payment_status: str = Field(serialization_alias="paymentStatus")
    requires_manual_action: bool = Field(default=False, serialization_alias="requiresManualAction")
    refund_ref: Optional[str] = Field(default=None, serialization_alias="refundRef")


class PaymentCheckResult(BaseModel):
    gateway: Optional[str] = None
    is_successful: bool = Field(serialization_alias="isSuccessful")


class PaymentTransactionView(BaseModel):
    """One ledger row as shown to admins; raw gateway payloads are not exposed."""

    id: int
    kind: str
    gateway: str
    transaction_ref: Optional[str] = Field(default=None, serialization_alias="transactionRef")
    gateway_transaction_id: Optional[str] = Field(default=None, serialization_alias="gatewayTransactionId")
    amount: Optional[Decimal] = None
    currency: str = "VND"
    status: str
    result_code: Optional[str] = Field(default=None, serialization_alias="resultCode")
    delivery_mode: Optional[str] = Field(default=None, serialization_alias="deliveryMode")
    applied: bool = False
    error_message: Optional[str] = Field(default=None, serialization_alias="errorMessage")
    created_at: Optional[datetime] = Field(default=None, serialization_alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, serialization_alias="updatedAt")

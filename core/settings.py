"""
Payment gateway settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so gateway credentials are grouped in
one place, e.g. ``VNPAY__HASH_SECRET`` or ``MOMO__IP_ALLOWLIST``.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 5.0
    write: float = 5.0
    total: float = 10.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class VNPaySettings(BaseModel):
    tmn_code: Optional[str] = None
    hash_secret: Optional[str] = None
    api_url: str = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
    return_url: Optional[str] = None
    version: str = "2.1.0"
    command: str = "pay"
    currency: str = "VND"
    locale: str = "vn"
    order_type: str = "other"
    expiration_minutes: int = 15


class MoMoSettings(BaseModel):
    partner_code: Optional[str] = None
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    partner_name: str = "LMS AI Pay"
    endpoint: str = "https://test-payment.momo.vn/v2/gateway/api/create"
    refund_endpoint: str = "https://test-payment.momo.vn/v2/gateway/api/refund"
    return_url: Optional[str] = None
    notify_url: Optional[str] = None
    request_type: str = "captureWallet"
    lang: str = "vi"
    link_lifetime_minutes: int = 100
    ip_allowlist: list[str] | None = None  # Optional IPs/CIDRs allowed to post IPN

    @field_validator("ip_allowlist", mode="before")
    @classmethod
    def _split_allowlist(cls, v):
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v


class ResultPageSettings(BaseModel):
    frontend_base_url: str = "http://localhost:3000"
    success_path: str = "/payment/success"
    failure_path: str = "/payment/failure"


class PaymentSettings(BaseSettings):
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)

    vnpay: VNPaySettings = Field(default_factory=VNPaySettings)
    momo: MoMoSettings = Field(default_factory=MoMoSettings)
    result_pages: ResultPageSettings = Field(default_factory=ResultPageSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()

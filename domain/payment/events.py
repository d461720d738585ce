"""
Order payment domain events.

Dataclass events record payment lifecycle facts for downstream handling
(enrollment, notifications). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class OrderPaymentEvent:
    order_id: int
    order_code: str
    gateway: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class OrderPaid(OrderPaymentEvent):
    transaction_id: Optional[str] = None


@dataclass
class OrderPaymentFailed(OrderPaymentEvent):
    reason: Optional[str] = None


@dataclass
class OrderRefunded(OrderPaymentEvent):
    amount: str = ""
    refund_total: str = ""
    requires_manual_action: bool = False


@dataclass
class CheckoutExpired(OrderPaymentEvent):
    pass

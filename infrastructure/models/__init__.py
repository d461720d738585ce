"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import OrderModel
from .payment_transaction import PaymentTransactionModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "PaymentTransactionModel",
]

"""
Factory for payment gateway clients.
"""
from __future__ import annotations

from typing import Union

from application.ports.payment_gateway import PaymentGateway
from domain.common.exceptions import ClassificationError
from shared.codes.payment_codes import GatewaySource, normalize_gateway


def get_payment_gateway(provider: Union[str, GatewaySource]) -> PaymentGateway:
    try:
        source = normalize_gateway(provider)
    except ValueError:
        raise ClassificationError([str(provider)])
    if source is GatewaySource.VNPAY:
        from .vnpay_client import VNPayClient
        return VNPayClient()
    from .momo_client import MoMoClient
    return MoMoClient()

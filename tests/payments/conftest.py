from decimal import Decimal

import pytest

from core.settings import payment_settings
from infrastructure.external.payments import momo_client, vnpay_client


def vnpay_params(
    order_code: str,
    amount: Decimal | int,
    *,
    response_code: str | None = "00",
    transaction_status: str | None = "00",
    transaction_no: str = "14012345",
    secret: str | None = None,
) -> dict[str, str]:
    params = {
        "vnp_Amount": str(vnpay_client.to_vnpay_amount(Decimal(str(amount)))),
        "vnp_BankCode": "NCB",
        "vnp_BankTranNo": "VNP14012345",
        "vnp_CardType": "ATM",
        "vnp_OrderInfo": f"Thanh toan don hang {order_code}",
        "vnp_PayDate": "20240501103000",
        "vnp_TmnCode": payment_settings.vnpay.tmn_code,
        "vnp_TransactionNo": transaction_no,
        "vnp_TxnRef": f"{order_code}-VNPay-1714534200000",
    }
    if response_code is not None:
        params["vnp_ResponseCode"] = response_code
    if transaction_status is not None:
        params["vnp_TransactionStatus"] = transaction_status
    params["vnp_SecureHash"] = vnpay_client.sign(params, secret or payment_settings.vnpay.hash_secret)
    return params


def momo_params(
    order_code: str,
    order_id: int | None,
    amount: Decimal | int,
    *,
    result_code: int = 0,
    message: str = "Thành công.",
    trans_id: int = 3100000001,
    secret: str | None = None,
) -> dict:
    cfg = payment_settings.momo
    extra = {"orderCode": order_code, "userId": 7}
    if order_id is not None:
        extra["orderId"] = order_id
    params = {
        "partnerCode": cfg.partner_code,
        "orderId": order_code,
        "requestId": f"{order_code}-MoMo-1714534200000",
        "amount": int(Decimal(str(amount))),
        "orderInfo": f"Thanh toán khóa học {order_code}",
        "orderType": "momo_wallet",
        "transId": trans_id,
        "resultCode": result_code,
        "message": message,
        "payType": "qr",
        "responseTime": 1714534260000,
        "extraData": momo_client.encode_extra_data(extra),
    }
    signing_values = dict(params, accessKey=cfg.access_key)
    params["signature"] = momo_client.sign(
        signing_values, momo_client.NOTIFICATION_SIGNATURE_KEYS, secret or cfg.secret_key
    )
    return params


@pytest.fixture
def signed_vnpay():
    return vnpay_params


@pytest.fixture
def signed_momo():
    return momo_params

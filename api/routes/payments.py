"""
Payments API routes.

Gateway return/IPN endpoints never surface errors to the transport: browser
returns always end in a redirect to the results pages, IPNs always end in the
gateway's ack shape. Checkout and refund endpoints use the JSON envelope.
"""
from __future__ import annotations

import ipaddress
import json
from typing import Any, Optional
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from api.dependencies import (
    get_admin_user,
    get_current_user,
    get_payment_service,
    get_response_composer,
)
from application.dtos.payments import CreateCheckoutRequest, RefundRequest
from application.services.payment_service import PaymentService
from application.services.response_composer import ResponseComposer
from application.services.token_service import TokenPrincipal
from core.i18n import t
from core.logging_config import get_logger
from core.response import success_response
from core.settings import payment_settings
from domain.common.exceptions import AuthenticityError, BusinessException
from domain.payment.notification import DeliveryMode
from shared.codes.payment_codes import GatewaySource


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


async def _collect_params(request: Request) -> dict[str, Any]:
    """Query string merged with a JSON or urlencoded body (body wins)."""
    params: dict[str, Any] = dict(request.query_params)
    if request.method in ("GET", "HEAD"):
        return params
    raw = await request.body()
    if not raw:
        return params
    content_type = (request.headers.get("content-type") or "").lower()
    if "application/json" in content_type:
        try:
            body = json.loads(raw)
        except ValueError:
            logger.warning("payment_body_not_json", path=request.url.path)
            return params
        if isinstance(body, dict):
            params.update(body)
    elif "application/x-www-form-urlencoded" in content_type:
        params.update(parse_qsl(raw.decode("utf-8", errors="ignore"), keep_blank_values=True))
    return params


def _ip_allowed(remote_ip: Optional[str], allowlist: list[str]) -> bool:
    if not allowlist:
        return True
    if not remote_ip:
        return False
    try:
        rip = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if "/" in entry:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            elif rip == ipaddress.ip_address(entry):
                return True
        except ValueError:
            logger.warning("ip_allowlist_entry_invalid", entry=entry)
            continue
    return False


def _failure_redirect(params: dict[str, Any], composer: ResponseComposer) -> RedirectResponse:
    message = t("payments.verify.failed")
    try:
        url = composer.failure_redirect(params, message)
    except Exception as exc:
        # the browser still has to land on the failure page
        logger.error("payment_failure_redirect_crashed", error=str(exc), exc_info=True)
        url = composer.failure_redirect({}, message)
    return RedirectResponse(url, status_code=302)


async def _redirect_flow(
    params: dict[str, Any],
    expected: Optional[GatewaySource],
    service: PaymentService,
    composer: ResponseComposer,
) -> RedirectResponse:
    try:
        processed = await service.process_notification(params, DeliveryMode.REDIRECT, expected)
    except BusinessException as exc:
        logger.warning(
            "payment_redirect_failed",
            expected_gateway=str(expected) if expected else None,
            error_type=exc.error_type,
            error=exc.message,
            reason=getattr(exc, "reason", None),
        )
        return _failure_redirect(params, composer)
    except Exception as exc:
        logger.error("payment_redirect_crashed", error=str(exc), exc_info=True)
        return _failure_redirect(params, composer)

    url = composer.redirect_for(processed.result.order, processed.gateway, params)
    return RedirectResponse(url, status_code=302)


async def _webhook_flow(
    params: dict[str, Any],
    gateway: GatewaySource,
    service: PaymentService,
    composer: ResponseComposer,
) -> JSONResponse:
    try:
        await service.process_notification(params, DeliveryMode.WEBHOOK, gateway)
    except BusinessException as exc:
        logger.warning(
            "payment_webhook_failed",
            gateway=str(gateway),
            error_type=exc.error_type,
            error=exc.message,
            reason=getattr(exc, "reason", None),
        )
        return JSONResponse(composer.webhook_error_ack(gateway, exc))
    except Exception as exc:
        logger.error("payment_webhook_crashed", gateway=str(gateway), error=str(exc), exc_info=True)
        return JSONResponse(composer.webhook_error_ack(gateway, exc))
    return JSONResponse(composer.webhook_ack(gateway))


# ---- checkout -------------------------------------------------------------


async def _create_checkout(gateway: str, order_id: int, request: Request, user: TokenPrincipal, service: PaymentService):
    client_ip = getattr(request.state, "client_ip", None) or (request.client.host if request.client else None)
    checkout = await service.create_checkout(order_id, gateway, user_id=user.user_id, client_ip=client_ip)
    return success_response(
        data=checkout.model_dump(mode="json", by_alias=True),
        message=t("payments.checkout.created"),
    )


@router.post("/{gateway}/create", summary="Create checkout URL")
async def create_checkout(
    gateway: str,
    payload: CreateCheckoutRequest,
    request: Request,
    user: TokenPrincipal = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return await _create_checkout(gateway, payload.order_id, request, user, service)


@router.get("/{gateway}/create", summary="Create checkout URL (query variant)")
async def create_checkout_get(
    gateway: str,
    request: Request,
    order_id: int = Query(alias="orderId", gt=0),
    user: TokenPrincipal = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return await _create_checkout(gateway, order_id, request, user, service)


# ---- VNPay ------------------------------------------------------------------


@router.get("/vnpay/callback", summary="VNPay browser return", include_in_schema=False)
async def vnpay_callback(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
    composer: ResponseComposer = Depends(get_response_composer),
):
    return await _redirect_flow(dict(request.query_params), GatewaySource.VNPAY, service, composer)


@router.get("/vnpay/webhook", summary="VNPay IPN", include_in_schema=False)
async def vnpay_webhook(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
    composer: ResponseComposer = Depends(get_response_composer),
):
    return await _webhook_flow(dict(request.query_params), GatewaySource.VNPAY, service, composer)


# ---- MoMo -------------------------------------------------------------------


@router.api_route("/momo/callback", methods=["GET", "POST"], summary="MoMo browser return", include_in_schema=False)
async def momo_callback(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
    composer: ResponseComposer = Depends(get_response_composer),
):
    params = await _collect_params(request)
    return await _redirect_flow(params, GatewaySource.MOMO, service, composer)


@router.post("/momo/webhook", summary="MoMo IPN", include_in_schema=False)
async def momo_webhook(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
    composer: ResponseComposer = Depends(get_response_composer),
):
    remote_ip = getattr(request.state, "client_ip", None) or (request.client.host if request.client else None)
    if not _ip_allowed(remote_ip, payment_settings.momo.ip_allowlist or []):
        logger.warning("momo_webhook_ip_rejected", remote_ip=remote_ip)
        return JSONResponse(
            composer.webhook_error_ack(GatewaySource.MOMO, AuthenticityError(GatewaySource.MOMO.value, "ip not allowed"))
        )
    params = await _collect_params(request)
    return await _webhook_flow(params, GatewaySource.MOMO, service, composer)


# ---- results page helpers ---------------------------------------------------


@router.get("/result", summary="Unified browser return", include_in_schema=False)
async def payment_result(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
    composer: ResponseComposer = Depends(get_response_composer),
):
    return await _redirect_flow(dict(request.query_params), None, service, composer)


@router.get("/result/check", summary="Check whether raw gateway params look successful")
async def payment_result_check(request: Request):
    result = PaymentService.check_result(dict(request.query_params))
    return success_response(data=result.model_dump(mode="json", by_alias=True), message=t("payments.result.checked"))


# ---- refunds ----------------------------------------------------------------


@router.post("/refund/{order_id}", summary="Refund an order (admin)")
async def refund_order(
    order_id: int,
    payload: Optional[RefundRequest] = None,
    admin: TokenPrincipal = Depends(get_admin_user),
    service: PaymentService = Depends(get_payment_service),
):
    result = await service.refund_order(order_id, payload or RefundRequest(), admin_id=admin.user_id)
    message = t("payments.refund.manual") if result.requires_manual_action else t("payments.refund.processed")
    return success_response(data=result.model_dump(mode="json", by_alias=True), message=message)


@router.get("/transactions/{order_id}", summary="Payment ledger of an order (admin)")
async def list_order_transactions(
    order_id: int,
    admin: TokenPrincipal = Depends(get_admin_user),
    service: PaymentService = Depends(get_payment_service),
):
    rows = await service.list_transactions(order_id)
    return success_response(
        data=[row.model_dump(mode="json", by_alias=True) for row in rows],
        message=t("payments.transactions.listed"),
    )

"""
请求/响应日志中间件

网关回调与 IPN 的参数会完整记录（签名、密钥脱敏），便于事后对账排查。
"""
import json
import time
from typing import Any, Optional
from urllib.parse import parse_qsl, urlsplit

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)

MASK = "***"


class LoggingMiddleware(BaseHTTPMiddleware):
    """记录请求开始/结束、耗时与状态码"""

    SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    # 网关通知路径：请求体始终记录，不受 DEBUG 开关影响
    GATEWAY_PATH_MARKERS = ("/callback", "/webhook", "/payments/result")

    SENSITIVE_FIELDS = {
        "token", "secret", "access_token", "authorization",
        "signature", "vnp_securehash", "accesskey", "secretkey", "hash_secret",
    }

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.enable_body_log_default: bool = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT
        self.max_body_log_bytes: int = settings.LOG_REQUEST_BODY_MAX_BYTES

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        info = await self._request_info(request)
        logger.info("request_started", **info)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=round(time.perf_counter() - started, 4),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
                **info,
            )
            raise

        duration = time.perf_counter() - started
        self._log_response(response, duration, info)
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    def is_gateway_delivery(self, request: Request) -> bool:
        path = request.url.path
        return "/payments/" in path and any(marker in path for marker in self.GATEWAY_PATH_MARKERS)

    async def _request_info(self, request: Request) -> dict:
        info: dict[str, Any] = {
            "method": request.method,
            "path": request.url.path,
        }
        if request.query_params:
            info["query_params"] = self.sanitize(dict(request.query_params))
        if request.path_params:
            info["path_params"] = request.path_params

        if request.method in ("POST", "PUT", "PATCH") and self._should_log_body(request):
            body = await self._read_body(request)
            if body is not None:
                info["body"] = body

        user_agent = request.headers.get("User-Agent")
        if user_agent:
            info["user_agent"] = user_agent
        return info

    def _should_log_body(self, request: Request) -> bool:
        # X-Log-Body: true/false 可按请求覆盖
        header = (request.headers.get("X-Log-Body") or "").lower()
        if header in {"true", "1", "yes"}:
            return True
        if header in {"false", "0", "no"}:
            return False
        if self.is_gateway_delivery(request):
            return True
        return bool(self.enable_body_log_default and settings.DEBUG)

    async def _read_body(self, request: Request) -> Optional[Any]:
        raw = await request.body()
        if not raw:
            return None
        text = raw[: self.max_body_log_bytes].decode("utf-8", errors="ignore")
        content_type = request.headers.get("content-type", "").lower()
        if "application/json" in content_type:
            try:
                return self.sanitize(json.loads(text))
            except ValueError:
                return text
        if "application/x-www-form-urlencoded" in content_type:
            return self.sanitize(dict(parse_qsl(text, keep_blank_values=True)))
        return text

    def sanitize(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {
                k: (MASK if str(k).lower() in self.SENSITIVE_FIELDS else self.sanitize(v))
                for k, v in data.items()
            }
        if isinstance(data, (list, tuple)):
            return [self.sanitize(v) for v in data]
        return data

    def _log_response(self, response: Response, duration: float, info: dict) -> None:
        status_code = response.status_code
        log_data: dict[str, Any] = {"status_code": status_code, "duration": round(duration, 4), **info}

        # 回调重定向只记录目标页面路径，不记录透传参数
        location = response.headers.get("location")
        if location:
            log_data["redirect_path"] = urlsplit(location).path

        if status_code < 400:
            logger.info("request_completed", **log_data)
        elif status_code < 500:
            logger.warning("request_client_error", **log_data)
        else:
            logger.error("request_server_error", **log_data)

"""
Request ID 中间件

生成或透传追踪ID，解析调用方真实IP（MoMo IPN 白名单依赖此值），
并绑定到 structlog 上下文。
"""
import ipaddress
import uuid
from contextvars import ContextVar
from typing import Iterable, List, Optional, Union

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
client_ip_var: ContextVar[Optional[str]] = ContextVar("client_ip", default=None)

_Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def _parse_networks(entries: Iterable[str]) -> List[_Network]:
    networks = []
    for entry in entries:
        try:
            networks.append(ipaddress.ip_network(str(entry).strip(), strict=False))
        except ValueError:
            logger.warning("trusted_proxy_invalid", entry=entry)
    return networks


def _in_networks(ip: Optional[str], networks: List[_Network]) -> bool:
    if not ip:
        return False
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return any(addr in net for net in networks)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """请求追踪：X-Request-ID 透传/生成 + 客户端IP 解析"""

    HEADER_NAME = "X-Request-ID"

    def __init__(self, app: ASGIApp, trusted_proxies: Optional[Iterable[str]] = None):
        super().__init__(app)
        self.trusted_networks = _parse_networks(
            settings.TRUSTED_PROXIES if trusted_proxies is None else trusted_proxies
        )

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        client_ip = self.resolve_client_ip(request)

        request.state.request_id = request_id
        request.state.client_ip = client_ip
        request_id_var.set(request_id)
        client_ip_var.set(client_ip)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=client_ip,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[self.HEADER_NAME] = request_id
        return response

    def resolve_client_ip(self, request: Request) -> Optional[str]:
        """
        获取客户端真实IP

        只有直连方属于可信代理时才读取 X-Forwarded-For（取最右侧的非代理地址）
        或 X-Real-IP，否则使用直连地址。
        """
        peer = request.client.host if request.client else None
        if not _in_networks(peer, self.trusted_networks):
            return peer

        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
            for hop in reversed(hops):
                if not _in_networks(hop, self.trusted_networks):
                    return hop
            if hops:
                return hops[0]

        return request.headers.get("X-Real-IP") or peer


def get_request_id() -> Optional[str]:
    """当前请求的 request_id，不在请求上下文中时为 None"""
    return request_id_var.get()


def get_client_ip() -> Optional[str]:
    return client_ip_var.get()

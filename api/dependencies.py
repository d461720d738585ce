"""
API依赖项 - 认证、授权与服务装配
"""
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional

from application.services.payment_service import PaymentService
from application.services.response_composer import ResponseComposer
from application.services.token_service import TokenPrincipal, TokenService
from core.config import settings
from core.exceptions import ForbiddenException, UnauthorizedException
from infrastructure.external.payments import get_payment_gateway
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)


async def get_token(
    bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer)
) -> str:
    """从 Bearer token 中提取 token"""
    if bearer_token and bearer_token.credentials:
        return bearer_token.credentials
    raise UnauthorizedException("未提供认证凭据")


def get_token_service() -> TokenService:
    return TokenService()


async def get_current_user(
    token: str = Depends(get_token),
    service: TokenService = Depends(get_token_service),
) -> TokenPrincipal:
    """获取当前调用方"""
    return service.verify_access_token(token)


async def get_admin_user(
    current_user: TokenPrincipal = Depends(get_current_user)
) -> TokenPrincipal:
    """获取当前管理员"""
    if not current_user.is_admin:
        raise ForbiddenException("需要管理员权限", required_role=settings.ADMIN_ROLE)
    return current_user


def get_payment_service() -> PaymentService:
    return PaymentService(uow_factory=SQLAlchemyUnitOfWork, gateway_factory=get_payment_gateway)


def get_response_composer() -> ResponseComposer:
    return ResponseComposer()

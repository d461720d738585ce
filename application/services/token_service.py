"""
令牌服务 - 校验平台签发的 JWT 访问令牌

用户与登录由主站负责，本服务只验证签名与声明：
sub = 用户ID，role = 角色，type = access。
"""
from typing import Optional
from datetime import datetime, timedelta, timezone
import uuid

import jwt
from pydantic import BaseModel

from core.config import settings
from core.exceptions import UnauthorizedException, TokenExpiredException
from core.logging_config import get_logger


logger = get_logger(__name__)


class TokenPrincipal(BaseModel):
    """令牌中解析出的调用方身份"""
    user_id: int
    role: Optional[str] = None
    jti: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return (self.role or "").upper() == settings.ADMIN_ROLE.upper()


class TokenService:
    """访问令牌的签发（测试/内部工具）与校验"""

    def __init__(self, secret_key: Optional[str] = None, algorithm: Optional[str] = None):
        self._secret_key = secret_key or settings.SECRET_KEY
        self._algorithm = algorithm or settings.ALGORITHM

    def create_access_token(
        self,
        user_id: int,
        role: Optional[str] = None,
        expires_minutes: int = 30,
    ) -> str:
        """创建访问令牌"""
        expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
        to_encode = {
            "sub": str(user_id),
            "role": role,
            "exp": expire,
            "type": "access",
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(to_encode, self._secret_key, algorithm=self._algorithm)

    def verify_access_token(self, token: str) -> TokenPrincipal:
        """
        校验访问令牌

        - 过期：TokenExpiredException
        - 签名无效/类型错误/缺少 sub：UnauthorizedException
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredException()
        except jwt.InvalidTokenError as e:
            logger.warning("invalid_access_token", error=str(e))
            raise UnauthorizedException("无效的认证凭据")

        if payload.get("type", "access") != "access":
            raise UnauthorizedException("令牌类型错误")

        user_id = str(payload.get("sub") or "")
        if not (user_id.isascii() and user_id.isdigit()):
            raise UnauthorizedException("令牌缺少必要字段")

        return TokenPrincipal(
            user_id=int(user_id),
            role=payload.get("role"),
            jti=payload.get("jti"),
        )

"""
订单仓储接口 - 定义订单数据访问的抽象接口

所有状态写入都是条件写（compare-and-swap）：实现必须在一条语句中同时
校验当前状态并写入新状态，返回是否命中，而不是先读后写。
"""
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .entity import Order, PaymentStatus


class OrderRepository(ABC):
    """订单仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """创建订单记录（结账流程/测试数据使用）"""
        pass

    @abstractmethod
    async def get_by_id(self, order_id: int) -> Optional[Order]:
        """根据ID获取订单"""
        pass

    @abstractmethod
    async def get_by_code(self, order_code: str) -> Optional[Order]:
        """根据订单编号获取订单"""
        pass

    @abstractmethod
    async def transition_from_pending(
        self,
        order_id: int,
        target: PaymentStatus,
        *,
        gateway: str,
        transaction_id: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> bool:
        """PENDING -> PAID/FAILED 的原子条件更新；订单已不是 PENDING 时返回 False"""
        pass

    @abstractmethod
    async def record_checkout(self, order_id: int, gateway: str, at: datetime) -> bool:
        """记录发起支付的网关与时间（仅 PENDING 订单）"""
        pass

    @abstractmethod
    async def record_refund(
        self,
        order_id: int,
        *,
        expected_refund_amount: Decimal,
        new_refund_amount: Decimal,
        new_status: PaymentStatus,
        at: datetime,
    ) -> bool:
        """以当前累计退款额为条件写入新的退款额和状态"""
        pass

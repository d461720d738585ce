"""
支付流水仓储接口

终结 CHECKOUT 行同样是条件写：只在 status 仍为 PENDING 时命中，
与订单的 PENDING -> PAID/FAILED 写入遵循同一个先到先得规则。
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .transaction import PaymentTransaction, TransactionStatus


class PaymentTransactionRepository(ABC):
    """支付流水仓储抽象接口"""

    @abstractmethod
    async def add(self, transaction: PaymentTransaction) -> PaymentTransaction:
        """写入一行流水，返回带ID与时间戳的实体"""
        pass

    @abstractmethod
    async def get_checkout(self, transaction_ref: str) -> Optional[PaymentTransaction]:
        """根据 transaction_ref 获取支付尝试"""
        pass

    @abstractmethod
    async def latest_pending_checkout(
        self,
        order_id: int,
        gateway: Optional[str] = None,
    ) -> Optional[PaymentTransaction]:
        """订单最近一次仍为 PENDING 的支付尝试；gateway 为空时不限网关"""
        pass

    @abstractmethod
    async def list_pending_checkouts(self, order_id: int) -> List[PaymentTransaction]:
        """订单所有仍为 PENDING 的支付尝试"""
        pass

    @abstractmethod
    async def settle(
        self,
        transaction_id: int,
        status: TransactionStatus,
        *,
        at: datetime,
        gateway_transaction_id: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        """PENDING -> SUCCESS/FAILED 的条件更新；已终结时返回 False"""
        pass

    @abstractmethod
    async def supersede_pending(
        self,
        order_id: int,
        *,
        reason: str,
        at: datetime,
        keep_id: Optional[int] = None,
        gateway: Optional[str] = None,
    ) -> int:
        """把订单其余 PENDING 支付尝试标记为 FAILED，返回影响行数"""
        pass

    @abstractmethod
    async def list_stale_checkouts(
        self,
        gateway: str,
        created_before: datetime,
        limit: int = 100,
    ) -> List[PaymentTransaction]:
        """列出 created_before 之前创建、仍为 PENDING 的支付尝试"""
        pass

    @abstractmethod
    async def list_for_order(self, order_id: int) -> List[PaymentTransaction]:
        """订单全部流水，按写入顺序"""
        pass

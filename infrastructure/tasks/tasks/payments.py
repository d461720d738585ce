"""Payment related Celery tasks"""
from __future__ import annotations

import asyncio

from celery import shared_task
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from ..utils.base_task import BaseTask
from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)


async def _expire_stale_checkouts(limit: int) -> int:
    # 延迟导入：worker 启动时不加载 web 依赖
    from application.services.payment_service import PaymentService
    from infrastructure.database import build_async_url
    from infrastructure.external.payments import get_payment_gateway
    from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

    # asyncio.run() opens a new loop per task; pooled connections must not outlive it.
    engine = create_async_engine(build_async_url(settings.database.url), poolclass=NullPool)
    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    try:
        service = PaymentService(
            uow_factory=lambda **kw: SQLAlchemyUnitOfWork(session_factory=session_factory, **kw),
            gateway_factory=get_payment_gateway,
        )
        return await service.expire_stale_checkouts(limit=limit)
    finally:
        await engine.dispose()


@shared_task(
    bind=True,
    base=BaseTask,
    name="payments.expire_stale_vnpay_checkouts",
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
)
def expire_stale_vnpay_checkouts(self, limit: int = 100) -> dict:
    """Mark VNPay checkouts that outlived their payment link as FAILED.

    VNPay sends nothing when a link expires, so this sweep is the only way
    such orders leave PENDING.
    """
    expired = asyncio.run(_expire_stale_checkouts(limit))
    logger.info("expire_stale_vnpay_checkouts_done", expired=expired)
    return {"expired": expired}

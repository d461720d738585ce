"""Celery beat schedule configuration.

Run beat alongside a worker (``celery -A infrastructure.tasks beat``) to
enable the periodic jobs below.
"""
from __future__ import annotations

from core.settings import payment_settings

CELERY_BEAT_SCHEDULE = {
    # VNPay never notifies about expired links; sweep well inside the link lifetime.
    "expire-stale-vnpay-checkouts": {
        "task": "payments.expire_stale_vnpay_checkouts",
        "schedule": max(60, payment_settings.vnpay.expiration_minutes * 60 // 3),
        "kwargs": {"limit": 200},
    },
}

"""
Celery Application Configuration
"""
from celery import Celery

from app.core.config import settings

celery_app = Celery(
    "chatpay_orders",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.workers.tasks"]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Asia/Kolkata",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # תופס webhooks שהוחמצו — הזמנות שתקועות ב-PAYMENT_SENT / REFUND_PENDING
    "reconcile-stale-orders-every-5-minutes": {
        "task": "app.workers.tasks.reconcile_stale_orders",
        "schedule": 300.0,  # 5 דקות
    },
    "expire-abandoned-orders-hourly": {
        "task": "app.workers.tasks.expire_abandoned_orders",
        "schedule": 3600.0,
    },
}

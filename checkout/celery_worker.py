# checkout/celery_worker.py
from celery import Celery

from checkout.utils.settings import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    CELERY_TASK_ALWAYS_EAGER,
    PAYMENT_TIMEOUT_SECONDS,
)

celery_app = Celery(
    "checkout",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# WAŻNE: Explicite importuj taski, żeby Celery je zarejestrował
celery_app.conf.imports = (
    "checkout.tasks.expire",
    "checkout.tasks.reconcile",
)

# w testach taski leca synchronicznie
celery_app.conf.task_always_eager = CELERY_TASK_ALWAYS_EAGER

# Konfiguracja beat schedule
celery_app.conf.beat_schedule = {
    "expire-payment-attempts": {
        "task": "checkout.tasks.expire.expire_payment_attempts_task",
        "schedule": max(60.0, PAYMENT_TIMEOUT_SECONDS / 5),
    },
    "retry-stock-decrements-every-5-minutes": {
        "task": "checkout.tasks.reconcile.retry_stock_decrements_task",
        "schedule": 300.0,
    },
}

celery_app.conf.timezone = "UTC"

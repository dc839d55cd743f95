# checkout/tasks/expire.py
from checkout.celery_worker import celery_app
from checkout.data.database import SessionLocal
from checkout.data.redis_client import get_redis
from checkout.services.payment_gateway import get_gateway
from checkout.services.payment_service import PaymentService
from checkout.utils.logging import get_logger

logger = get_logger(__name__)


@celery_app.task(name="checkout.tasks.expire.expire_payment_attempts_task")
def expire_payment_attempts_task():
    """Platnosci bez odpowiedzi z bramki -> FAILED (timeout), formularz znowu aktywny."""
    logger.info("Expire payment attempts task started")

    db = SessionLocal()
    try:
        expired = PaymentService(db, get_redis(), get_gateway()).expire_stale()
        logger.info(f"Expired {expired} payment attempts")
        return expired
    finally:
        db.close()

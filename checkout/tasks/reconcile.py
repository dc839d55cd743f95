# checkout/tasks/reconcile.py
from checkout.celery_worker import celery_app
from checkout.data.database import SessionLocal
from checkout.services.reconciliation_service import ReconciliationService
from checkout.utils.logging import get_logger

logger = get_logger(__name__)


@celery_app.task(name="checkout.tasks.reconcile.retry_stock_decrements_task")
def retry_stock_decrements_task(limit: int = 100):
    logger.info("Retry stock decrements task started")

    db = SessionLocal()
    try:
        resolved = ReconciliationService(db).retry_stock_decrements(limit=limit)
        logger.info(f"Resolved {resolved} stock reconciliation events")
        return resolved
    finally:
        db.close()

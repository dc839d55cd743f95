# checkout/api/routers/health.py
import redis
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from checkout.data.database import get_db
from checkout.data.redis_client import get_redis
from checkout.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
def health(db: Session = Depends(get_db), client: redis.Redis = Depends(get_redis)):
    status = {"database": "ok", "redis": "ok"}

    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health: baza niedostepna: {e}")
        status["database"] = "error"

    try:
        client.ping()
    except redis.RedisError as e:
        logger.error(f"Health: redis niedostepny: {e}")
        status["redis"] = "error"

    status["status"] = "ok" if all(v == "ok" for v in status.values()) else "degraded"
    return status

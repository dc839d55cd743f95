# checkout/data/redis_client.py
import redis

from checkout.utils.settings import REDIS_URL

_client: redis.Redis | None = None


def get_redis() -> redis.Redis:
    """Wspolny klient redisa (pula polaczen), uzywany tez jako dependency FastAPI."""
    global _client
    if _client is None:
        _client = redis.Redis.from_url(REDIS_URL, decode_responses=True)
    return _client

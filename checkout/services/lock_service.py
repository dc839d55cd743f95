import redis
from checkout.utils.retry import redis_retry
from checkout.utils.settings import REDIS_URL
from checkout.utils.logging import get_logger

logger = get_logger(__name__)

#LUA porownaj i usun, atomicity
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""

#redis wykonuje atomowo przez lua, skrypt dziala jako jedna nieprzerywalna operacja
#nie mozna wcisnac sie miedzy GET a DEL, wiec tu jest get + porownanie + del wszystko naraz


class LockService:
    """
    -flagi "juz wystartowalo" dla sesji checkoutu (single-flight)
    -rezerwacje numerow zamowien
    -zwalnianie tylko przez wlasciciela (lua)
    """

    def __init__(self, client: redis.Redis | None = None, url: str | None = None):
        self.redis = client or redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )

    @redis_retry()
    def acquire(self, key: str, owner: str, ttl: int) -> bool:
        logger.debug(f"Acquire lock {key} for {owner}")
        #SET checkout:abc:submit "owner" NX EX 900
        return bool(
            self.redis.set(
                name=key,
                value=owner,
                nx=True, #not eXists, jesli klucz jest to nic nie rob i False
                ex=ttl, #Expire, lock sam wygasa po ttl (reset "submitting" gdy klient zniknie)
            )
        )

    @redis_retry()
    def release(self, key: str, owner: str) -> bool:
        logger.debug(f"Release lock {key} for {owner}")
        res = self.redis.eval(_RELEASE_LUA, 1, key, owner)
        return bool(res)

    @redis_retry()
    def force_release(self, key: str) -> None:
        self.redis.delete(key)

    @redis_retry()
    def holder(self, key: str) -> str | None:
        return self.redis.get(key)

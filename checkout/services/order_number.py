# checkout/services/order_number.py
import random
import time

import redis

from checkout.services.lock_service import LockService
from checkout.utils.settings import (
    ORDER_NUMBER_ATTEMPTS,
    ORDER_NUMBER_PREFIX,
    ORDER_NUMBER_RESERVATION_TTL,
)
from checkout.utils.logging import get_logger

logger = get_logger(__name__)

MIN_NUMBER = 1000
MAX_NUMBER = 999999


class OrderNumberGenerator:
    """
    Krotki numer zamowienia, np. ORD-ID:482913.

    Kandydat jest rezerwowany w redisie (SET NX) i sprawdzany w tabeli zamowien.
    Miedzy sprawdzeniem a insertem nic nie jest atomowe - unique constraint na
    orders.order_number i tak musi zlapac kolizje przy zapisie.
    """

    def __init__(self, client: redis.Redis, exists, lock_service: LockService | None = None, rng=None):
        # exists(order_number) -> bool, zwykle OrderRepo.order_number_exists
        self.redis = client
        self.exists = exists
        self.locks = lock_service or LockService(client)
        self.rng = rng or random.SystemRandom()

    def generate(self) -> str:
        for attempt in range(ORDER_NUMBER_ATTEMPTS):
            candidate = f"{ORDER_NUMBER_PREFIX}{self.rng.randint(MIN_NUMBER, MAX_NUMBER)}"

            if not self.locks.acquire(f"order-number:{candidate}", "reserved", ORDER_NUMBER_RESERVATION_TTL):
                continue
            if self.exists(candidate):
                continue
            return candidate

        fallback = self._fallback()
        logger.warning(f"{ORDER_NUMBER_ATTEMPTS} kolizji numeru zamowienia, uzywam {fallback}")
        return fallback

    def _fallback(self) -> str:
        #milisekundy + licznik z redisa, unikalne bez sprawdzania
        seq = self.redis.incr("order-number:fallback-seq") % 1000
        return f"{ORDER_NUMBER_PREFIX}{int(time.time() * 1000)}{seq:03d}"

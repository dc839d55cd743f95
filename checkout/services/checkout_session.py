# checkout/services/checkout_session.py
import json
from typing import Any, Dict

import redis

from checkout.utils.retry import redis_retry
from checkout.utils.settings import CHECKOUT_SESSION_TTL_SECONDS


class CheckoutSession:
    """
    Stan jednej sesji checkoutu trzymany w redisie (z TTL):
    intent, wybrany adres, oczekujaca platnosc, wynik zlozenia zamowienia.
    Nic z tego nie modyfikuje rekordow w bazie.
    """

    def __init__(self, client: redis.Redis, session_id: str):
        self.redis = client
        self.session_id = session_id

    def key(self, name: str) -> str:
        return f"checkout:{self.session_id}:{name}"

    @property
    def intent_lock_key(self) -> str:
        return self.key("intent:lock")

    @property
    def submit_key(self) -> str:
        return self.key("submit")

    @redis_retry()
    def _get_json(self, name: str) -> Dict[str, Any] | None:
        raw = self.redis.get(self.key(name))
        return json.loads(raw) if raw else None

    @redis_retry()
    def _set_json(self, name: str, value: Dict[str, Any]) -> None:
        self.redis.set(self.key(name), json.dumps(value, default=str), ex=CHECKOUT_SESSION_TTL_SECONDS)

    #intent - wynik rozwiazania (intent albo kod bledu)
    def get_intent_outcome(self) -> Dict[str, Any] | None:
        return self._get_json("intent")

    def store_intent_outcome(self, outcome: Dict[str, Any]) -> None:
        self._set_json("intent", outcome)

    #adres wybrany do tego checkoutu
    @redis_retry()
    def select_address(self, address_id: int) -> None:
        self.redis.set(self.key("address"), str(address_id), ex=CHECKOUT_SESSION_TTL_SECONDS)

    @redis_retry()
    def selected_address(self) -> int | None:
        raw = self.redis.get(self.key("address"))
        return int(raw) if raw else None

    #checkout czekajacy na platnosc przez bramke
    def get_pending(self) -> Dict[str, Any] | None:
        return self._get_json("pending")

    def store_pending(self, pending: Dict[str, Any]) -> None:
        self._set_json("pending", pending)

    #wynik zlozenia zamowienia, drugie wyslanie formularza dostaje to samo
    def get_result(self) -> Dict[str, Any] | None:
        return self._get_json("result")

    def store_result(self, result: Dict[str, Any]) -> None:
        self._set_json("result", result)

    @redis_retry()
    def clear_pending(self) -> None:
        self.redis.delete(self.key("pending"))

# checkout/utils/retry.py
from tenacity import (
    retry,
    retry_if_exception,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
    wait_fixed,
)
import requests
import redis

#zerwane polaczenie albo timeout, bledy komend (np. WRONGTYPE) nie przejda przy kolejnej probie
TRANSIENT_REDIS_ERRORS = (redis.ConnectionError, redis.TimeoutError)


def is_transient_http_error(exc: BaseException) -> bool:
    #4xx to odpowiedz bramki (zle dane, brak autoryzacji), ponowienie nic nie zmieni
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        return exc.response.status_code >= 500
    return isinstance(exc, requests.RequestException)


def http_retry(attempts: int = 3):
    """Wywolania bramki: ponawiamy tylko 5xx i bledy sieci."""
    return retry(
        reraise=True,
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.3, min=0.3, max=3),
        retry=retry_if_exception(is_transient_http_error),
    )


def redis_retry(attempts: int = 3):
    return retry(
        reraise=True,
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(TRANSIENT_REDIS_ERRORS),
    )


def poll_until_present(timeout: float, interval: float = 0.05):
    """Ponawia funkcje dopoki zwraca None (np. czekanie na wynik innego wywolania)."""
    return retry(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(interval),
        retry=retry_if_result(lambda value: value is None),
        retry_error_callback=lambda state: None,
    )

# checkout/services/payment_gateway.py
import hashlib
import hmac
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal

import requests

from checkout.utils.retry import http_retry
from checkout.utils.settings import (
    PAYMENT_GATEWAY,
    RAZORPAY_API_URL,
    RAZORPAY_KEY_ID,
    RAZORPAY_KEY_SECRET,
)
from checkout.utils.logging import get_logger

logger = get_logger(__name__)


class GatewayError(Exception):
    """Bramka odrzucila zadanie albo jest niedostepna."""


@dataclass(frozen=True)
class GatewayOrder:
    gateway_order_id: str
    amount_minor: int
    currency: str


def to_minor_units(amount: Decimal) -> int:
    #bramka chce najmniejsza jednostke waluty (paise)
    return int((amount * 100).quantize(Decimal("1")))


def sign(secret: str, gateway_order_id: str, gateway_payment_id: str) -> str:
    message = f"{gateway_order_id}|{gateway_payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


class PaymentGateway(ABC):
    """Kontrakt bramki platnosci."""

    key_id: str
    key_secret: str

    @abstractmethod
    def create_order(self, amount: Decimal, currency: str, receipt: str, notes: dict) -> GatewayOrder:
        ...

    def verify_signature(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        """Podpis liczony po naszej stronie, nigdy nie ufamy samemu "sukcesowi" od klienta."""
        if not self.key_secret:
            raise GatewayError("Brak sekretu bramki platnosci")
        expected = sign(self.key_secret, gateway_order_id, gateway_payment_id)
        return hmac.compare_digest(expected, signature)


class RazorpayGateway(PaymentGateway):
    def __init__(
        self,
        key_id: str | None = None,
        key_secret: str | None = None,
        base_url: str | None = None,
        timeout: int = 5,
    ):
        self.key_id = key_id or RAZORPAY_KEY_ID
        self.key_secret = key_secret or RAZORPAY_KEY_SECRET
        self.base_url = (base_url or RAZORPAY_API_URL).rstrip("/")
        self.timeout = timeout

    @http_retry()
    def _post(self, path: str, payload: dict) -> dict:
        url = f"{self.base_url}{path}"
        logger.info(f"RazorpayGateway POST {url}")

        resp = requests.post(
            url,
            json=payload,
            auth=(self.key_id, self.key_secret),
            timeout=self.timeout,
        )
        if 400 <= resp.status_code < 500:
            #bledy klienta nie sa ponawiane
            try:
                description = resp.json().get("error", {}).get("description")
            except ValueError:
                description = None
            raise GatewayError(description or f"Bramka odrzucila zadanie ({resp.status_code})")
        resp.raise_for_status()
        return resp.json()

    def create_order(self, amount: Decimal, currency: str, receipt: str, notes: dict) -> GatewayOrder:
        if not self.key_id or not self.key_secret:
            raise GatewayError("Bramka platnosci nie jest skonfigurowana")

        data = self._post(
            "/orders",
            {
                "amount": to_minor_units(amount),
                "currency": currency,
                "receipt": receipt[:40],
                "notes": notes,
            },
        )
        return GatewayOrder(
            gateway_order_id=data["id"],
            amount_minor=data["amount"],
            currency=data["currency"],
        )


class FakeGateway(PaymentGateway):
    """Bramka do developmentu i testow, bez zewnetrznych wywolan."""

    def __init__(self, key_id: str = "rzp_test_fake", key_secret: str = "fake_secret"):
        self.key_id = key_id
        self.key_secret = key_secret
        self.should_fail = False
        self.calls: list[dict] = []

    def create_order(self, amount: Decimal, currency: str, receipt: str, notes: dict) -> GatewayOrder:
        self.calls.append({"amount": amount, "currency": currency, "receipt": receipt, "notes": notes})
        if self.should_fail:
            raise GatewayError("Bramka odrzucila zadanie")
        return GatewayOrder(
            gateway_order_id=f"order_{uuid.uuid4().hex[:14]}",
            amount_minor=to_minor_units(amount),
            currency=currency,
        )

    def sign(self, gateway_order_id: str, gateway_payment_id: str) -> str:
        return sign(self.key_secret, gateway_order_id, gateway_payment_id)


_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        _gateway = FakeGateway() if PAYMENT_GATEWAY == "fake" else RazorpayGateway()
    return _gateway


def receipt_for(session_id: str) -> str:
    return f"ord_{str(int(time.time() * 1000))[-10:]}_{session_id[:20]}"

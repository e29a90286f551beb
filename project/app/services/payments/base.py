# app/services/payments/base.py

"""
Общий контракт платёжного шлюза.

Любой шлюз (PayU, Razorpay, PhonePe) умеет три вещи:
  - create_session(order)        создать страницу оплаты и вернуть, куда отправить покупателя;
  - verify_callback / verify_webhook   пересчитать подпись входящего уведомления
                                       и только после этого ему верить;
  - map_status(status)           перевести статусы шлюза в {pending, paid, failed}.

Активен ровно один шлюз, его выбирает PAYMENT_GATEWAY (см. registry.get_gateway).
"""

import hmac
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping, Optional

import httpx

from app.exceptions import AuthenticityError, GatewayError
from app.models.order import OrderStatus

SESSION_REF_RE = re.compile(r"^BP(\d+)T\d+$")


@dataclass
class PaymentSession:
    session_id: str
    redirect_url: str
    method: str = "GET"
    form_fields: dict = field(default_factory=dict)


@dataclass
class PaymentConfirmation:
    """Результат проверенного уведомления шлюза."""
    session_id: str
    status: OrderStatus
    payment_id: Optional[str] = None
    amount: Optional[Decimal] = None   # None, если шлюз не передаёт сумму (callback Razorpay)
    order_id: Optional[int] = None     # id заказа из подписанных полей, если шлюз его возвращает
    raw_status: str = ""


class PaymentGateway(ABC):
    name = ""
    signature_header: Optional[str] = None   # заголовок подписи webhook, None - подпись в теле
    STATUS_MAP: dict = {}

    def __init__(self, config, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self.timeout = config.PAYMENT_TIMEOUT_SECONDS
        self.transport = transport   # в тестах сюда подставляется httpx.MockTransport

    # ────────────── Контракт ──────────────
    @abstractmethod
    async def create_session(self, order) -> PaymentSession:
        ...

    @abstractmethod
    async def verify_callback(self, payload: Mapping[str, str], signature: str | None = None) -> PaymentConfirmation:
        """Редирект покупателя обратно (форма или query string)."""

    @abstractmethod
    async def verify_webhook(self, raw_body: bytes, signature: str | None = None) -> PaymentConfirmation:
        """Серверное уведомление шлюза, подпись считается по сырому телу."""

    def map_status(self, gateway_status: str | None) -> OrderStatus:
        """Неизвестный статус не считается ни успехом, ни отказом."""
        return self.STATUS_MAP.get(str(gateway_status or "").strip(), OrderStatus.PENDING)

    # ────────────── Общие помощники ──────────────
    def ensure_configured(self, **values):
        missing = [key for key, value in values.items() if not value]
        if missing:
            raise GatewayError(f"Шлюз {self.name} не настроен", missing=missing)

    @staticmethod
    def new_session_ref(order_id: int) -> str:
        """Уникальный id попытки оплаты: повторная попытка того же заказа получает новый id."""
        return f"BP{order_id}T{int(time.time() * 1000)}"

    @staticmethod
    def order_id_from_ref(ref: str | None) -> Optional[int]:
        match = SESSION_REF_RE.match(ref or "")
        return int(match.group(1)) if match else None

    @staticmethod
    def signatures_match(expected: str, received: str | None) -> bool:
        """Сравнение подписи за постоянное время; hex сравнивается без учёта регистра."""
        if not received:
            return False
        return hmac.compare_digest(expected.strip().lower().encode(), received.strip().lower().encode())

    def reject(self, message: str, **context):
        raise AuthenticityError(message, gateway=self.name, **context)

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        """
        HTTP-запрос к шлюзу. Сеть, 4xx/5xx и не-JSON ответ -> GatewayError.
        Текст ответа шлюза уходит только в context (в лог), не клиенту.
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise GatewayError(gateway=self.name, error=f"{type(e).__name__}: {e}") from e

        if response.status_code >= 400:
            raise GatewayError(gateway=self.name, http_status=response.status_code, body=response.text[:500])
        try:
            return response.json()
        except ValueError as e:
            raise GatewayError(gateway=self.name, error="ответ шлюза не JSON", body=response.text[:500]) from e

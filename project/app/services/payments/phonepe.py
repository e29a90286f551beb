# app/services/payments/phonepe.py

import base64
import hashlib
import json
from typing import Mapping

from app.exceptions import GatewayError
from app.models.order import OrderStatus
from app.services.payments.base import PaymentConfirmation, PaymentGateway, PaymentSession
from app.utils.money import from_minor_units, to_minor_units

PHONEPE_URLS = {
    "production": "https://api.phonepe.com/apis/hermes",
    "test": "https://api-preprod.phonepe.com/apis/pg-sandbox",
}
PAY_ENDPOINT = "/pg/v1/pay"


class PhonePeGateway(PaymentGateway):
    """
    PhonePe PG (PAY_PAGE). Запрос - base64(JSON), заголовок
    X-VERIFY = sha256(base64 + endpoint + salt_key) + "###" + salt_index.
    Server-to-server callback подписан так же: sha256(response + salt_key)###index.
    Редирект покупателя не подписан, поэтому он проверяется запросом статуса к PhonePe.
    """
    name = "phonepe"
    signature_header = "X-VERIFY"
    STATUS_MAP = {
        "PAYMENT_SUCCESS": OrderStatus.PAID,
        "PAYMENT_ERROR": OrderStatus.FAILED,
        "PAYMENT_DECLINED": OrderStatus.FAILED,
        "PAYMENT_CANCELLED": OrderStatus.FAILED,
        "AUTHORIZATION_FAILED": OrderStatus.FAILED,
        "TIMED_OUT": OrderStatus.FAILED,
        "PAYMENT_PENDING": OrderStatus.PENDING,
        "INTERNAL_SERVER_ERROR": OrderStatus.PENDING,
    }

    @property
    def base_url(self) -> str:
        return PHONEPE_URLS["production" if self.config.PHONEPE_MODE == "production" else "test"]

    def x_verify(self, data: str) -> str:
        digest = hashlib.sha256((data + self.config.PHONEPE_SALT_KEY).encode("utf-8")).hexdigest()
        return f"{digest}###{self.config.PHONEPE_SALT_INDEX}"

    def _configured(self):
        self.ensure_configured(
            PHONEPE_MERCHANT_ID=self.config.PHONEPE_MERCHANT_ID,
            PHONEPE_SALT_KEY=self.config.PHONEPE_SALT_KEY,
        )

    async def create_session(self, order) -> PaymentSession:
        self._configured()
        txn = self.new_session_ref(order.order_id)
        payload = {
            "merchantId": self.config.PHONEPE_MERCHANT_ID,
            "merchantTransactionId": txn,
            "merchantUserId": f"BPU{order.order_id}",
            "amount": to_minor_units(order.total_amount),
            "redirectUrl": f"{self.config.API_URL}/payments/phonepe/callback",
            "redirectMode": "POST",
            "callbackUrl": f"{self.config.API_URL}/payments/webhook",
            "mobileNumber": order.customer_phone,
            "paymentInstrument": {"type": "PAY_PAGE"},
        }
        encoded = base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")
        data = await self._request(
            "POST",
            f"{self.base_url}{PAY_ENDPOINT}",
            json={"request": encoded},
            headers={"X-VERIFY": self.x_verify(encoded + PAY_ENDPOINT)},
        )
        if not data.get("success"):
            raise GatewayError(gateway=self.name, code=data.get("code"), message=data.get("message"))
        try:
            url = data["data"]["instrumentResponse"]["redirectInfo"]["url"]
        except (KeyError, TypeError) as e:
            raise GatewayError(gateway=self.name, error="в ответе нет redirectInfo.url") from e
        return PaymentSession(session_id=txn, redirect_url=url)

    def _confirmation(self, decoded: dict) -> PaymentConfirmation:
        data = decoded.get("data") or {}
        code = decoded.get("code", "")
        status = self.map_status(code)
        txn = data.get("merchantTransactionId", "")
        return PaymentConfirmation(
            session_id=txn,
            status=status,
            payment_id=data.get("transactionId") if status == OrderStatus.PAID else None,
            amount=from_minor_units(data["amount"]) if data.get("amount") is not None else None,
            order_id=self.order_id_from_ref(txn),
            raw_status=code,
        )

    async def verify_webhook(self, raw_body: bytes, signature: str | None = None) -> PaymentConfirmation:
        try:
            encoded = json.loads(raw_body).get("response", "")
        except (ValueError, AttributeError):
            encoded = ""
        if not encoded:
            self.reject("В callback PhonePe нет поля response")
        if not self.config.PHONEPE_SALT_KEY:
            self.reject("PHONEPE_SALT_KEY не задан, callback не принимается")
        if not self.signatures_match(self.x_verify(encoded), signature):
            self.reject("X-VERIFY PhonePe не совпал")
        return self._confirmation(json.loads(base64.b64decode(encoded)))

    async def verify_callback(self, payload: Mapping[str, str], signature: str | None = None) -> PaymentConfirmation:
        """
        Форма редиректа не подписана: берём из неё только id транзакции
        и спрашиваем статус у PhonePe (ответ по TLS от самого шлюза).
        """
        self._configured()
        txn = payload.get("transactionId") or payload.get("merchantTransactionId")
        if not txn or self.order_id_from_ref(txn) is None:
            self.reject("В редиректе PhonePe нет корректного transactionId", transaction_id=txn)

        path = f"/pg/v1/status/{self.config.PHONEPE_MERCHANT_ID}/{txn}"
        data = await self._request(
            "GET",
            f"{self.base_url}{path}",
            headers={"X-VERIFY": self.x_verify(path), "X-MERCHANT-ID": self.config.PHONEPE_MERCHANT_ID},
        )
        confirmation = self._confirmation(data)
        if confirmation.session_id != txn:
            self.reject("Статус PhonePe относится к другой транзакции", transaction_id=txn)
        return confirmation

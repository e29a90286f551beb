# app/services/payments/razorpay.py

import hashlib
import hmac
import json
from typing import Mapping

from app.exceptions import GatewayError
from app.models.order import OrderStatus
from app.services.payments.base import PaymentConfirmation, PaymentGateway, PaymentSession
from app.utils.money import from_minor_units, to_minor_units

RAZORPAY_API = "https://api.razorpay.com/v1"


class RazorpayGateway(PaymentGateway):
    """
    Razorpay Payment Links: POST /v1/payment_links -> short_url (страница оплаты).
    Сумма в пайсах. Подписи - HMAC-SHA256:
      callback: key_secret над "link_id|reference_id|status|payment_id";
      webhook:  webhook_secret над сырым телом, заголовок X-Razorpay-Signature.
    """
    name = "razorpay"
    signature_header = "X-Razorpay-Signature"
    STATUS_MAP = {
        "paid": OrderStatus.PAID,
        "captured": OrderStatus.PAID,
        "failed": OrderStatus.FAILED,
        "cancelled": OrderStatus.FAILED,
        "expired": OrderStatus.FAILED,
        "created": OrderStatus.PENDING,
        "issued": OrderStatus.PENDING,
        "authorized": OrderStatus.PENDING,
        "partially_paid": OrderStatus.PENDING,
    }

    @staticmethod
    def hmac_sha256(secret: str, message: bytes) -> str:
        return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()

    async def create_session(self, order) -> PaymentSession:
        self.ensure_configured(
            RAZORPAY_KEY_ID=self.config.RAZORPAY_KEY_ID,
            RAZORPAY_KEY_SECRET=self.config.RAZORPAY_KEY_SECRET,
        )
        reference = self.new_session_ref(order.order_id)
        body = {
            "amount": to_minor_units(order.total_amount),
            "currency": "INR",
            "accept_partial": False,
            "reference_id": reference,
            "description": f"Books Plaza order #{order.order_id}",
            "customer": {
                "name": order.customer_name,
                "email": order.customer_email,
                "contact": order.customer_phone,
            },
            "notify": {"sms": False, "email": False},
            "reminder_enable": False,
            "notes": {"order_id": str(order.order_id)},
            "callback_url": f"{self.config.API_URL}/payments/razorpay/callback",
            "callback_method": "get",
        }
        data = await self._request(
            "POST",
            f"{RAZORPAY_API}/payment_links",
            json=body,
            auth=(self.config.RAZORPAY_KEY_ID, self.config.RAZORPAY_KEY_SECRET),
        )
        link_id, short_url = data.get("id"), data.get("short_url")
        if not link_id or not short_url:
            raise GatewayError(gateway=self.name, error="в ответе нет id/short_url")
        return PaymentSession(session_id=link_id, redirect_url=short_url)

    async def verify_callback(self, payload: Mapping[str, str], signature: str | None = None) -> PaymentConfirmation:
        if not self.config.RAZORPAY_KEY_SECRET:
            self.reject("RAZORPAY_KEY_SECRET не задан, callback не принимается")
        link_id = payload.get("razorpay_payment_link_id", "")
        reference = payload.get("razorpay_payment_link_reference_id", "")
        status_value = payload.get("razorpay_payment_link_status", "")
        payment_id = payload.get("razorpay_payment_id", "")

        message = f"{link_id}|{reference}|{status_value}|{payment_id}".encode("utf-8")
        expected = self.hmac_sha256(self.config.RAZORPAY_KEY_SECRET, message)
        if not self.signatures_match(expected, signature or payload.get("razorpay_signature")):
            self.reject("Подпись callback Razorpay не совпала", link_id=link_id)

        status = self.map_status(status_value)
        return PaymentConfirmation(
            session_id=link_id,
            status=status,
            payment_id=(payment_id or None) if status == OrderStatus.PAID else None,
            order_id=self.order_id_from_ref(reference),
            raw_status=status_value,
        )

    async def verify_webhook(self, raw_body: bytes, signature: str | None = None) -> PaymentConfirmation:
        if not self.config.RAZORPAY_WEBHOOK_SECRET:
            self.reject("RAZORPAY_WEBHOOK_SECRET не задан, webhook не принимается")
        expected = self.hmac_sha256(self.config.RAZORPAY_WEBHOOK_SECRET, raw_body)
        if not self.signatures_match(expected, signature):
            self.reject("Подпись webhook Razorpay не совпала")

        event = json.loads(raw_body)
        event_type = event.get("event", "")
        payload = event.get("payload", {})
        link = payload.get("payment_link", {}).get("entity", {})
        payment = payload.get("payment", {}).get("entity", {})

        if not event_type.startswith("payment_link."):
            # прочие события (payment.authorized и т.п.) заказ не двигают
            return PaymentConfirmation(session_id="", status=OrderStatus.PENDING, raw_status=event_type)

        status = self.map_status(link.get("status"))
        minor = link.get("amount_paid") if status == OrderStatus.PAID else link.get("amount")
        return PaymentConfirmation(
            session_id=link.get("id", ""),
            status=status,
            payment_id=payment.get("id") if status == OrderStatus.PAID else None,
            amount=from_minor_units(minor) if minor is not None else None,
            order_id=self.order_id_from_ref(link.get("reference_id")),
            raw_status=event_type,
        )

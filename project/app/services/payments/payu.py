# app/services/payments/payu.py

import hashlib
import json
from typing import Mapping
from urllib.parse import parse_qsl

from app.models.order import OrderStatus
from app.schemas.order import ShippingAddress
from app.services.payments.base import PaymentConfirmation, PaymentGateway, PaymentSession
from app.utils.money import format_major, to_decimal

PAYU_URLS = {
    "production": "https://secure.payu.in",
    "test": "https://sandboxsecure.payu.in",
}
UDF_FIELDS = ("udf1", "udf2", "udf3", "udf4", "udf5")


class PayUGateway(PaymentGateway):
    """
    PayU hosted checkout: покупатель отправляет подписанную форму на /_payment,
    PayU возвращает его POST-формой на surl/furl. Подпись - SHA-512 по полям через '|'.
    Сумма - строка в рупиях с двумя знаками ("250.00").
    """
    name = "payu"
    STATUS_MAP = {
        "success": OrderStatus.PAID,
        "failure": OrderStatus.FAILED,
        "failed": OrderStatus.FAILED,
        "cancel": OrderStatus.FAILED,
        "cancelled": OrderStatus.FAILED,
        "pending": OrderStatus.PENDING,
    }

    @property
    def base_url(self) -> str:
        return PAYU_URLS["production" if self.config.PAYU_MODE == "production" else "test"]

    def map_status(self, gateway_status: str | None) -> OrderStatus:
        return super().map_status(str(gateway_status or "").lower())

    # key|txnid|amount|productinfo|firstname|email|udf1|...|udf5||||||SALT
    def request_hash(self, fields: Mapping[str, str]) -> str:
        sequence = [
            self.config.PAYU_MERCHANT_KEY,
            fields["txnid"],
            fields["amount"],
            fields["productinfo"],
            fields["firstname"],
            fields["email"],
            *(fields.get(udf, "") for udf in UDF_FIELDS),
            "", "", "", "", "",
            self.config.PAYU_MERCHANT_SALT,
        ]
        return hashlib.sha512("|".join(sequence).encode("utf-8")).hexdigest()

    # [additionalCharges|]SALT|status||||||udf5|...|udf1|email|firstname|productinfo|amount|txnid|key
    def response_hash(self, fields: Mapping[str, str]) -> str:
        sequence = [
            self.config.PAYU_MERCHANT_SALT,
            fields.get("status", ""),
            "", "", "", "", "",
            *(fields.get(udf, "") for udf in reversed(UDF_FIELDS)),
            fields.get("email", ""),
            fields.get("firstname", ""),
            fields.get("productinfo", ""),
            fields.get("amount", ""),
            fields.get("txnid", ""),
            self.config.PAYU_MERCHANT_KEY,
        ]
        if fields.get("additionalCharges"):
            sequence.insert(0, fields["additionalCharges"])
        return hashlib.sha512("|".join(sequence).encode("utf-8")).hexdigest()

    async def create_session(self, order) -> PaymentSession:
        self.ensure_configured(
            PAYU_MERCHANT_KEY=self.config.PAYU_MERCHANT_KEY,
            PAYU_MERCHANT_SALT=self.config.PAYU_MERCHANT_SALT,
        )
        txnid = self.new_session_ref(order.order_id)
        address = ShippingAddress.from_json(order.shipping_address)
        return_url = f"{self.config.API_URL}/payments/payu/callback"

        fields = {
            "key": self.config.PAYU_MERCHANT_KEY,
            "txnid": txnid,
            "amount": format_major(order.total_amount),
            "productinfo": f"Books Plaza order #{order.order_id}",
            "firstname": order.customer_name,
            "email": order.customer_email,
            "phone": order.customer_phone,
            "surl": return_url,
            "furl": return_url,
            "udf1": str(order.order_id),
            "udf2": "", "udf3": "", "udf4": "", "udf5": "",
            "address1": address.street,
            "address2": address.apartment or "",
            "city": address.city,
            "state": address.state,
            "country": address.country,
            "zipcode": address.postal_code,
        }
        fields["hash"] = self.request_hash(fields)
        return PaymentSession(
            session_id=txnid,
            redirect_url=f"{self.base_url}/_payment",
            method="POST",
            form_fields=fields,
        )

    async def verify_callback(self, payload: Mapping[str, str], signature: str | None = None) -> PaymentConfirmation:
        if not self.config.PAYU_MERCHANT_SALT:
            self.reject("PAYU_MERCHANT_SALT не задан, ответ PayU не принимается")
        received = signature or payload.get("hash")
        if not received:
            self.reject("В ответе PayU нет hash", txnid=payload.get("txnid"))
        if not self.signatures_match(self.response_hash(payload), received):
            self.reject("Hash PayU не совпал", txnid=payload.get("txnid"), status=payload.get("status"))

        status = self.map_status(payload.get("status"))
        udf1 = payload.get("udf1", "")
        return PaymentConfirmation(
            session_id=payload.get("txnid", ""),
            status=status,
            payment_id=payload.get("mihpayid") if status == OrderStatus.PAID else None,
            amount=to_decimal(payload["amount"]) if payload.get("amount") else None,
            order_id=int(udf1) if udf1.isdigit() else None,
            raw_status=payload.get("status", ""),
        )

    async def verify_webhook(self, raw_body: bytes, signature: str | None = None) -> PaymentConfirmation:
        """Webhook PayU приходит формой или JSON с теми же полями и тем же hash."""
        text = raw_body.decode("utf-8")
        try:
            fields = json.loads(text)
        except ValueError:
            fields = dict(parse_qsl(text, keep_blank_values=True))
        if not isinstance(fields, dict):
            self.reject("Неразборчивое тело webhook PayU")
        fields = {k: "" if v is None else str(v) for k, v in fields.items()}
        return await self.verify_callback(fields, signature)

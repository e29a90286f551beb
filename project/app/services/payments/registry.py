# app/services/payments/registry.py

from app.config import settings
from app.services.payments.base import PaymentGateway
from app.services.payments.payu import PayUGateway
from app.services.payments.phonepe import PhonePeGateway
from app.services.payments.razorpay import RazorpayGateway

GATEWAYS = {
    PayUGateway.name: PayUGateway,
    RazorpayGateway.name: RazorpayGateway,
    PhonePeGateway.name: PhonePeGateway,
}


def get_gateway(config=settings, transport=None) -> PaymentGateway:
    """Активный шлюз по PAYMENT_GATEWAY; выбирается один раз при старте приложения."""
    name = (config.PAYMENT_GATEWAY or "").strip().lower()
    if name not in GATEWAYS:
        raise ValueError(f"Неизвестный PAYMENT_GATEWAY: {config.PAYMENT_GATEWAY!r}, ожидается одно из {sorted(GATEWAYS)}")
    return GATEWAYS[name](config, transport=transport)

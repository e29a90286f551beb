"""Test fixtures for the storefront API tests."""

import os
import tempfile
import uuid

# Окружение задаётся до импорта app: settings и engine читаются при импорте
_TMP = tempfile.mkdtemp(prefix="books-plaza-tests-")
os.environ.update({
    "DATABASE_URL": f"sqlite+aiosqlite:///{os.path.join(_TMP, 'test.db')}",
    "LOG_DIR": os.path.join(_TMP, "log"),
    "LOG_PRINT": "0",
    "UPLOADS_DIR": os.path.join(_TMP, "uploads"),
    "API_URL": "http://api.test",
    "FRONTEND_URL": "http://shop.test",
    "ADMIN_CODE": "test-admin-code",
    "PAYMENT_GATEWAY": "payu",
    "PAYU_MERCHANT_KEY": "gtKFFx",
    "PAYU_MERCHANT_SALT": "eCwWELxi",
    "RAZORPAY_KEY_ID": "rzp_test_key",
    "RAZORPAY_KEY_SECRET": "rzp_test_secret",
    "RAZORPAY_WEBHOOK_SECRET": "rzp_webhook_secret",
    "PHONEPE_MERCHANT_ID": "PGTESTPAYUAT",
    "PHONEPE_SALT_KEY": "099eb0cd-02cf-4e2a-8aca-3e6c6aff0399",
    "PHONEPE_SALT_INDEX": "1",
    "SMTP_HOST": "",
})

import httpx
import pytest
from fastapi.testclient import TestClient

from app.config import settings
from app.main import app
from app.services.payments.registry import get_gateway


@pytest.fixture
def client():
    """TestClient с поднятым lifespan (init_db, Log, активный шлюз)."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers():
    return {"admincode": settings.ADMIN_CODE}


@pytest.fixture
def make_book(client, admin_headers):
    """Создаёт книгу через админку (multipart с обложкой) и возвращает JSON ответа."""
    def _make(price="125.00", **fields):
        data = {
            "title": f"The Guide {uuid.uuid4().hex[:8]}",
            "author": "R. K. Narayan",
            "description": "A tour guide turned spiritual guide.",
            "price": price,
            "genre": "Fiction",
            "language": "English",
            **fields,
        }
        response = client.post(
            "/admin/books",
            data=data,
            files={"image": ("cover.png", b"\x89PNG\r\n\x1a\nfake", "image/png")},
            headers=admin_headers,
        )
        assert response.status_code == 201, response.text
        return response.json()
    return _make


@pytest.fixture
def order_payload():
    """Тело заказа; email уникальный, чтобы заказы разных тестов не совпадали по отпечатку корзины."""
    def _payload(items, /, **overrides):
        payload = {
            "items": items,
            "shipping_address": {
                "recipient_name": "Asha Rao",
                "street": "12 MG Road",
                "apartment": "Flat 4B",
                "city": "Bengaluru",
                "state": "Karnataka",
                "postal_code": "560001",
                "country": "India",
            },
            "customer_name": "Asha Rao",
            "customer_email": f"asha.{uuid.uuid4().hex[:8]}@example.in",
            "customer_phone": "9876543210",
        }
        payload.update(overrides)
        return payload
    return _payload


@pytest.fixture
def use_gateway(client):
    """Подменяет активный шлюз приложения; handler - обработчик httpx.MockTransport."""
    def _use(name, handler=None):
        config = settings.model_copy(update={"PAYMENT_GATEWAY": name})
        transport = httpx.MockTransport(handler) if handler is not None else None
        gateway = get_gateway(config, transport=transport)
        client.app.state.gateway = gateway
        return gateway
    return _use


@pytest.fixture
def orders_count(client, admin_headers):
    def _count(status=None):
        params = {"status": status} if status else {}
        response = client.get("/admin/orders", params=params, headers=admin_headers)
        assert response.status_code == 200, response.text
        return response.json()["total"]
    return _count

"""Unit tests for the order confirmation email."""

import asyncio
import smtplib
from decimal import Decimal

import pytest

from app.config import settings
from app.services.notify import build_confirmation_email, send_order_confirmation


@pytest.fixture
def snapshot():
    return {
        "order": {
            "order_id": 17,
            "customer_name": "Asha Rao",
            "customer_email": "asha@example.in",
            "transaction_id": "BP17T1700000000000",
            "payment_id": "403993715521",
            "total_amount": Decimal("250.00"),
            "shipping_address": {
                "recipient_name": "Asha Rao",
                "street": "12 MG Road",
                "apartment": None,
                "city": "Bengaluru",
                "state": "Karnataka",
                "postal_code": "560001",
                "country": "India",
            },
        },
        "items": [{"book_id": 3, "title": "The Guide", "quantity": 2, "price": Decimal("125.00")}],
    }


def test_confirmation_email_contents(snapshot):
    message = build_confirmation_email(snapshot)

    body = message.get_content()
    assert message["To"] == "asha@example.in"
    assert message["Subject"] == "Order Confirmation - Order #17"
    assert "The Guide x 2 = ₹250.00" in body
    assert "Total: ₹250.00" in body
    assert "Bengaluru, Karnataka 560001" in body


def test_without_smtp_email_is_only_logged(snapshot, mocker):
    log = mocker.AsyncMock()

    assert asyncio.run(send_order_confirmation(snapshot, log)) is False
    log.log_info.assert_awaited_once()


def test_email_sent_through_smtp(snapshot, mocker, monkeypatch):
    monkeypatch.setattr(settings, "SMTP_HOST", "smtp.test")
    smtp = mocker.patch("app.services.notify.smtplib.SMTP")
    log = mocker.AsyncMock()

    assert asyncio.run(send_order_confirmation(snapshot, log)) is True
    server = smtp.return_value.__enter__.return_value
    server.starttls.assert_called_once()
    server.send_message.assert_called_once()


def test_smtp_failure_does_not_raise(snapshot, mocker, monkeypatch):
    monkeypatch.setattr(settings, "SMTP_HOST", "smtp.test")
    mocker.patch("app.services.notify.smtplib.SMTP", side_effect=smtplib.SMTPConnectError(421, b"busy"))
    log = mocker.AsyncMock()

    assert asyncio.run(send_order_confirmation(snapshot, log)) is False
    log.log_error.assert_awaited_once()

# app/services/notify.py

import asyncio
import smtplib
from email.message import EmailMessage

from app.config import settings
from app.utils.log import mask


def build_confirmation_email(order: dict) -> EmailMessage:
    """
    Письмо-подтверждение оплаченного заказа.
    order - снимок OrderResponse.model_dump(): {"order": {...}, "items": [...]}
    """
    info = order["order"]
    address = info["shipping_address"]
    lines = [
        f"{item['title'] or 'Книга #' + str(item['book_id'])} x {item['quantity']} = ₹{item['price'] * item['quantity']:.2f}"
        for item in order["items"]
    ]
    body = "\n".join([
        f"Dear {info['customer_name']},",
        "",
        "Thank you for your order! Payment has been received.",
        "",
        f"Order ID: {info['order_id']}",
        f"Transaction ID: {info['transaction_id']}",
        f"Payment ID: {info['payment_id']}",
        "",
        *lines,
        "",
        f"Total: ₹{info['total_amount']:.2f}",
        "",
        "Shipping to:",
        address["recipient_name"],
        ", ".join(filter(None, [address["street"], address.get("apartment")])),
        f"{address['city']}, {address['state']} {address['postal_code']}",
        address["country"],
        "",
        "Thank you for shopping with Books Plaza!",
    ])

    message = EmailMessage()
    message["Subject"] = f"Order Confirmation - Order #{info['order_id']}"
    message["From"] = settings.SMTP_FROM
    message["To"] = info["customer_email"]
    message.set_content(body)
    return message


def _send(message: EmailMessage) -> None:
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as server:
        server.starttls()
        if settings.SMTP_USER:
            server.login(settings.SMTP_USER, settings.SMTP_PASS)
        server.send_message(message)


async def send_order_confirmation(order: dict, log) -> bool:
    """
    Best-effort: ошибка отправки только логируется, на заказ не влияет.
    Без SMTP_HOST письмо не отправляется, только запись в лог.
    """
    order_id = order["order"]["order_id"]
    email = order["order"]["customer_email"]
    if not settings.SMTP_HOST:
        await log.log_info("notify", "SMTP не настроен, письмо не отправлено", {"id": order_id, "email": mask(email)})
        return False
    try:
        await asyncio.to_thread(_send, build_confirmation_email(order))
    except (smtplib.SMTPException, OSError) as e:
        await log.log_error("notify", f"Не удалось отправить письмо: {e}", {"id": order_id, "email": mask(email)})
        return False

    await log.log_info("notify", "Письмо-подтверждение отправлено", {"id": order_id, "email": mask(email)})
    return True

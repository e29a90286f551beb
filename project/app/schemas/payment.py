# app/schemas/payment.py

from typing import Dict, Optional
from pydantic import BaseModel, Field

from app.schemas.order import OrderOut


class PaymentCreateRequest(BaseModel):
    order_id: int = Field(..., gt=0)


class PaymentSessionOut(BaseModel):
    """
    Куда отправить покупателя.
    method=GET: просто редирект на redirect_url;
    method=POST: фронтенд отправляет form_fields формой на redirect_url (PayU).
    """
    order_id: int
    redirect_url: str
    session_id: str
    method: str = "GET"
    form_fields: Dict[str, str] = {}


class CheckoutResponse(PaymentSessionOut):
    order: OrderOut


class WebhookAck(BaseModel):
    """Ответ шлюзу: 200 всегда, итог обработки - в status/applied."""
    received: bool = True
    status: Optional[str] = None     # paid | failed | pending | rejected | unknown_order | error
    applied: bool = False            # True - эта доставка изменила заказ
    order_id: Optional[int] = None

# app/schemas/order.py

import json
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from app.models.order import OrderStatus


# ────────────── Адрес доставки ──────────────
class ShippingAddress(BaseModel):
    """
    Адрес доставки. Хранится в orders.shipping_address JSON-текстом.
    Принимает и старые имена полей фронтенда (address, zipCode).
    """
    recipient_name: str = Field(..., min_length=1, validation_alias=AliasChoices("recipient_name", "recipientName", "name"))
    street: str = Field(..., min_length=1, validation_alias=AliasChoices("street", "address"))
    apartment: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1, validation_alias=AliasChoices("postal_code", "postalCode", "zipCode", "zip"))
    country: str = "India"

    def to_json(self) -> str:
        return json.dumps(self.model_dump(), ensure_ascii=False, sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> "ShippingAddress":
        return cls.model_validate(json.loads(raw))


# ────────────── Входные данные ──────────────
class OrderItemIn(BaseModel):
    book_id: int = Field(..., gt=0)
    quantity: int = Field(..., ge=1)
    price: Optional[Decimal] = Field(None, ge=0, description="Цена из корзины клиента, сверяется с каталогом")


class OrderCreate(BaseModel):
    items: List[OrderItemIn] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    customer_name: str = Field(..., min_length=1)
    customer_email: str = Field(..., min_length=3)
    customer_phone: str = Field(..., min_length=5)
    idempotency_key: Optional[str] = Field(None, max_length=128)

    @field_validator("customer_name", "customer_email", "customer_phone")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("поле не может быть пустым")
        return value

    @field_validator("customer_email")
    @classmethod
    def looks_like_email(cls, value: str) -> str:
        local, _, domain = value.partition("@")
        if not local or "." not in domain:
            raise ValueError("некорректный email")
        return value.lower()


class CheckoutRequest(OrderCreate):
    """Корзина + контакты + адрес одним запросом: заказ и сразу сессия оплаты."""
    pass


class OrderStatusUpdate(BaseModel):
    status: str
    override: bool = False  # административный откат терминального статуса

    @field_validator("status")
    @classmethod
    def canonical(cls, value: str) -> str:
        return OrderStatus.normalize(value).value


# ────────────── Ответы ──────────────
class OrderItemOut(BaseModel):
    id: int
    book_id: int
    title: Optional[str] = None   # название на момент запроса, не на момент заказа
    quantity: int
    price: Decimal

    model_config = {
        "from_attributes": True
    }


class OrderOut(BaseModel):
    order_id: int
    payment_status: str
    checkout_state: str
    total_amount: Decimal
    shipping_address: ShippingAddress
    customer_name: str
    customer_email: str
    customer_phone: str
    transaction_id: Optional[str] = None
    payment_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {
        "from_attributes": True
    }

    @field_validator("shipping_address", mode="before")
    @classmethod
    def parse_address(cls, value):
        if isinstance(value, str):
            return json.loads(value)
        return value


class OrderResponse(BaseModel):
    order: OrderOut
    items: List[OrderItemOut] = []

    @classmethod
    def from_model(cls, db_order) -> "OrderResponse":
        return cls(
            order=OrderOut.model_validate(db_order),
            items=[OrderItemOut.model_validate(item) for item in db_order.items],
        )


class OrderListResponse(BaseModel):
    orders: List[OrderResponse]
    total: int

# app/models/order.py

import enum
from sqlalchemy import Column, Integer, String, Text, DateTime, Numeric, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.utils.database import Base
from app.models.book import Book  # noqa: F401  (нужен для OrderItem.book)


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"

    @classmethod
    def normalize(cls, value: str) -> "OrderStatus":
        """
        Приводит словарь разных интеграций к {pending, paid, failed}:
        'Completed', 'success', 'captured' -> paid; 'failure', 'cancelled' -> failed.
        """
        key = str(value or "").strip().lower()
        if key in LEGACY_STATUSES:
            return LEGACY_STATUSES[key]
        raise ValueError(f"Неизвестный статус оплаты: {value}")


LEGACY_STATUSES = {
    "pending": OrderStatus.PENDING,
    "created": OrderStatus.PENDING,
    "paid": OrderStatus.PAID,
    "completed": OrderStatus.PAID,
    "success": OrderStatus.PAID,
    "captured": OrderStatus.PAID,
    "failed": OrderStatus.FAILED,
    "failure": OrderStatus.FAILED,
    "cancelled": OrderStatus.FAILED,
    "declined": OrderStatus.FAILED,
}


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_orders_total_non_negative"),
    )

    order_id         = Column(Integer, primary_key=True, index=True)   # автоинкремент
    payment_status   = Column(String(16), nullable=False, default=OrderStatus.PENDING.value, index=True)
    total_amount     = Column(Numeric(10, 2), nullable=False)          # Сумма, считается сервером
    shipping_address = Column(Text, nullable=False)                    # JSON-храним как текст

    customer_name    = Column(String, nullable=False)                  # снимок контактов на момент заказа
    customer_email   = Column(String, nullable=False)
    customer_phone   = Column(String, nullable=False)

    transaction_id   = Column(String, nullable=True, index=True)       # id сессии шлюза
    payment_id       = Column(String, nullable=True)                   # id платежа, только для paid

    idempotency_key  = Column(String, unique=True, nullable=True)      # ключ повтора от клиента
    cart_fingerprint = Column(String(64), nullable=True, index=True)   # отпечаток корзины

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.id",
    )

    @property
    def checkout_state(self) -> str:
        """created -> awaiting_payment -> paid | failed"""
        if self.payment_status != OrderStatus.PENDING.value:
            return self.payment_status
        return "awaiting_payment" if self.transaction_id else "created"


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        CheckConstraint("price >= 0", name="ck_order_items_price_non_negative"),
    )

    id       = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.order_id", ondelete="CASCADE"), nullable=False, index=True)
    book_id  = Column(Integer, ForeignKey("books.book_id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    price    = Column(Numeric(10, 2), nullable=False)                  # цена на момент заказа

    order = relationship("Order", back_populates="items")
    book  = relationship("Book", lazy="selectin")

    @property
    def title(self) -> str | None:
        # название берётся из каталога при чтении, а не снимком при заказе
        return self.book.title if self.book is not None else None

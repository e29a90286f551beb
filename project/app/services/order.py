# app/services/order.py

import hashlib
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from fastapi import Request
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from app.config import settings
from app.exceptions import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    StatusTransitionError,
    ValidationError,
)
from app.models.book import Book as BookModel
from app.models.order import Order as OrderModel, OrderItem as OrderItemModel, OrderStatus
from app.schemas.order import OrderCreate
from app.utils.log import mask
from app.utils.money import to_decimal


# ────────────── Вспомогательные ──────────────
def merge_lines(order: OrderCreate) -> dict[int, dict]:
    """
    Схлопывает повторяющиеся книги в одну строку: {book_id: {"quantity", "price"}}.
    Цена из корзины клиента сохраняется только для сверки с каталогом.
    """
    lines: dict[int, dict] = {}
    for item in order.items:
        line = lines.setdefault(item.book_id, {"quantity": 0, "client_price": item.price})
        line["quantity"] += item.quantity
    return lines


def compute_total(lines: dict[int, dict]) -> Decimal:
    """Σ price * quantity по строкам заказа. Сумму от клиента не принимаем никогда."""
    total = sum((to_decimal(line["price"]) * line["quantity"] for line in lines.values()), Decimal("0"))
    return to_decimal(total)


def cart_fingerprint(order: OrderCreate, lines: dict[int, dict]) -> str:
    """Отпечаток оформления: контакты + адрес + корзина. Одинаковый повтор = тот же заказ."""
    payload = {
        "email": order.customer_email,
        "name": order.customer_name,
        "phone": order.customer_phone,
        "address": order.shipping_address.model_dump(),
        "items": sorted((book_id, line["quantity"], str(line["price"])) for book_id, line in lines.items()),
    }
    raw = json.dumps(payload, sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def check_transition(current: OrderStatus, new: OrderStatus, override: bool = False) -> bool:
    """
    Политика переходов для ручной смены статуса.
    Возвращает False, если статус уже такой (идемпотентно), True если переход разрешён,
    иначе StatusTransitionError.

        pending -> failed          разрешено (отмена)
        * -> paid                  запрещено: paid только по проверенному callback шлюза
        paid -> failed             только override (возврат/chargeback), payment_id очищается
        failed -> pending          только override (повторное открытие заказа)
    """
    if current == new:
        return False
    if new == OrderStatus.PAID:
        raise StatusTransitionError("Статус paid выставляется только подтверждением платёжного шлюза")
    if current == OrderStatus.PENDING:
        return True
    if not override:
        raise StatusTransitionError(f"Заказ в терминальном статусе {current.value}, нужен override")
    return True


async def load_order(db, order_id: int) -> OrderModel | None:
    """Заказ вместе со строками и книгами (свежие данные из БД)."""
    result = await db.execute(
        select(OrderModel)
        .options(selectinload(OrderModel.items).selectinload(OrderItemModel.book))
        .where(OrderModel.order_id == order_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _insert_order_row(db, order: OrderCreate, total: Decimal, fingerprint: str) -> OrderModel:
    db_order = OrderModel(
        payment_status=OrderStatus.PENDING.value,
        total_amount=total,
        shipping_address=order.shipping_address.to_json(),
        customer_name=order.customer_name,
        customer_email=order.customer_email,
        customer_phone=order.customer_phone,
        idempotency_key=order.idempotency_key,
        cart_fingerprint=fingerprint,
    )
    db.add(db_order)
    await db.flush()  # получаем order_id
    return db_order


async def _insert_items(db, order_id: int, lines: dict[int, dict]) -> None:
    for book_id, line in lines.items():
        db.add(OrderItemModel(
            order_id=order_id,
            book_id=book_id,
            quantity=line["quantity"],
            price=line["price"],
        ))
    await db.flush()


async def _find_reusable_order(db, order: OrderCreate, fingerprint: str) -> OrderModel | None:
    """
    Повтор оформления той же корзины не создаёт новый заказ:
    - по idempotency_key (другая корзина с тем же ключом -> 409),
    - по отпечатку корзины среди pending-заказов за последние ORDER_REUSE_WINDOW_MINUTES.
    """
    if order.idempotency_key:
        result = await db.execute(
            select(OrderModel.order_id, OrderModel.cart_fingerprint)
            .where(OrderModel.idempotency_key == order.idempotency_key)
        )
        row = result.first()
        if row is not None:
            if row.cart_fingerprint != fingerprint:
                raise ConflictError("idempotency_key уже использован для другой корзины")
            return await load_order(db, row.order_id)
        return None

    since = datetime.now(timezone.utc) - timedelta(minutes=settings.ORDER_REUSE_WINDOW_MINUTES)
    result = await db.execute(
        select(OrderModel.order_id)
        .where(
            OrderModel.cart_fingerprint == fingerprint,
            OrderModel.payment_status == OrderStatus.PENDING.value,
            OrderModel.payment_id.is_(None),
            OrderModel.created_at >= since,
        )
        .order_by(OrderModel.order_id.desc())
        .limit(1)
    )
    order_id = result.scalar_one_or_none()
    return await load_order(db, order_id) if order_id is not None else None


# ────────────── CRUD ──────────────
async def create_order_service(order: OrderCreate, request: Request) -> tuple[OrderModel, bool]:
    """
    Создание заказа (pending) и его строк одной транзакцией.
    Возвращает (заказ, created): created=False, если переиспользован существующий pending-заказ.
    """
    db = request.state.db
    log = request.app.state.log

    lines = merge_lines(order)

    # Книги из каталога: существование, активность, цена-снимок
    result = await db.execute(select(BookModel).where(BookModel.book_id.in_(list(lines))))
    books = {book.book_id: book for book in result.scalars().all()}

    missing = sorted(set(lines) - set(books))
    if missing:
        await log.log_warning("order", "Заказ ссылается на несуществующие книги", {"book_ids": missing})
        raise NotFoundError(f"Книги не найдены: {', '.join(map(str, missing))}")

    for book_id, line in lines.items():
        book = books[book_id]
        if not book.is_active:
            raise ValidationError(f"Книга «{book.title}» недоступна для заказа")
        line["price"] = to_decimal(book.price)
        if line["client_price"] is not None and to_decimal(line["client_price"]) != line["price"]:
            raise ValidationError(f"Цена книги «{book.title}» изменилась, обновите корзину")

    total = compute_total(lines)
    fingerprint = cart_fingerprint(order, lines)

    existing = await _find_reusable_order(db, order, fingerprint)
    if existing is not None:
        await log.log_info("order", "Повтор оформления, используется существующий заказ", {"id": existing.order_id})
        return existing, False

    try:
        db_order = await _insert_order_row(db, order, total, fingerprint)
        await _insert_items(db, db_order.order_id, lines)
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        if order.idempotency_key:
            # параллельный запрос с тем же ключом успел первым
            existing = await _find_reusable_order(db, order, fingerprint)
            if existing is not None:
                return existing, False
        await log.log_error("order", "Откат транзакции создания заказа", {"error": str(e.orig)})
        raise PersistenceError("Не удалось создать заказ") from e
    except SQLAlchemyError as e:
        await db.rollback()
        await log.log_error("order", "Откат транзакции создания заказа", {"error": str(e)})
        raise PersistenceError("Не удалось создать заказ") from e

    await log.log_info("order", "Заказ создан", {
        "id": db_order.order_id,
        "total": total,
        "items": len(lines),
        "email": mask(order.customer_email),
    })
    return await load_order(db, db_order.order_id), True


async def read_orders_service(
    request: Request, skip: int = 0, limit: int = 100, status: str | None = None
) -> tuple[list[OrderModel], int]:
    """
    Список заказов для админки, новые сверху, с фильтром по статусу.
    """
    db = request.state.db
    log = request.app.state.log

    query = select(OrderModel).options(selectinload(OrderModel.items).selectinload(OrderItemModel.book))
    count_query = select(func.count(OrderModel.order_id))
    if status:
        try:
            status = OrderStatus.normalize(status).value
        except ValueError as e:
            raise ValidationError(str(e)) from e
        query = query.where(OrderModel.payment_status == status)
        count_query = count_query.where(OrderModel.payment_status == status)

    result = await db.execute(query.order_by(OrderModel.order_id.desc()).offset(skip).limit(limit))
    orders = result.scalars().all()
    total = (await db.execute(count_query)).scalar_one()

    await log.log_info("order", f"{len(orders)} заказов загружено", {"total": total, "status": status})
    return list(orders), total


async def read_order_service(id: int, request: Request) -> OrderModel:
    """
    Чтение заказа по ID вместе со строками.
    """
    db = request.state.db
    log = request.app.state.log

    db_order = await load_order(db, id)
    if db_order is None:
        await log.log_error("order", "Заказ не найден", {"id": id})
        raise NotFoundError("Заказ не найден", order_id=id)

    await log.log_info("order", "Заказ загружен", {"id": id})
    return db_order


async def find_order_by_transaction_service(transaction_id: str, request: Request) -> OrderModel | None:
    db = request.state.db
    result = await db.execute(select(OrderModel.order_id).where(OrderModel.transaction_id == transaction_id))
    order_id = result.scalar_one_or_none()
    return await load_order(db, order_id) if order_id is not None else None


async def update_order_status_service(
    id: int, new_status: str, request: Request, override: bool = False
) -> OrderModel:
    """
    Ручная (административная) смена статуса по политике check_transition.
    Повторная установка того же статуса ничего не меняет.
    """
    db = request.state.db
    log = request.app.state.log

    db_order = await load_order(db, id)
    if db_order is None:
        await log.log_error("order", "Заказ не найден для обновления", {"id": id})
        raise NotFoundError("Заказ не найден", order_id=id)

    current = OrderStatus(db_order.payment_status)
    new = OrderStatus.normalize(new_status)

    if not check_transition(current, new, override):
        await log.log_info("order", "Статус не изменён, уже установлен", {"id": id, "status": new.value})
        return db_order

    values = {"payment_status": new.value}
    if current == OrderStatus.PAID:
        values["payment_id"] = None  # payment_id есть только у paid

    try:
        result = await db.execute(
            update(OrderModel)
            .where(OrderModel.order_id == id, OrderModel.payment_status == current.value)
            .values(**values)
        )
        if result.rowcount != 1:
            await db.rollback()
            raise ConflictError("Статус заказа изменился параллельно, повторите запрос")
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        await log.log_error("order", "Ошибка смены статуса", {"id": id, "error": str(e)})
        raise PersistenceError("Не удалось обновить статус заказа") from e

    await log.log_info("order", "Статус заказа обновлён", {
        "id": id,
        "from": current.value,
        "to": new.value,
        "override": override,
        "cleared_payment_id": db_order.payment_id if current == OrderStatus.PAID else None,
    })
    return await load_order(db, id)


async def delete_order_service(id: int, request: Request) -> None:
    """
    Удаление заказа по ID (строки удаляются каскадом).
    """
    db = request.state.db
    log = request.app.state.log

    db_order = await load_order(db, id)
    if db_order is None:
        await log.log_error("order", "Заказ не найден для удаления", {"id": id})
        raise NotFoundError("Заказ не найден", order_id=id)

    await db.delete(db_order)
    await db.commit()
    await log.log_info("order", "Заказ удалён", {"id": id})


# ────────────── Переходы по событиям шлюза ──────────────
async def _guarded_update(request: Request, id: int, values: dict) -> bool:
    """
    UPDATE ... WHERE payment_status = 'pending'.
    True - переход применён этим вызовом; False - заказ уже не pending (повторная доставка).
    """
    db = request.state.db
    try:
        result = await db.execute(
            update(OrderModel)
            .where(OrderModel.order_id == id, OrderModel.payment_status == OrderStatus.PENDING.value)
            .values(**values)
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        await request.app.state.log.log_error("order", "Ошибка обновления заказа", {"id": id, "error": str(e)})
        raise PersistenceError("Не удалось обновить заказ") from e
    return result.rowcount == 1


async def attach_transaction_service(id: int, transaction_id: str, request: Request) -> bool:
    """Привязывает id сессии шлюза к pending-заказу; статус остаётся pending."""
    applied = await _guarded_update(request, id, {"transaction_id": transaction_id})
    await request.app.state.log.log_info("order", "Сессия оплаты привязана" if applied else "Сессия не привязана, заказ не pending", {
        "id": id, "transaction_id": transaction_id,
    })
    return applied


async def mark_order_paid_service(id: int, payment_id: str, request: Request) -> bool:
    applied = await _guarded_update(request, id, {
        "payment_status": OrderStatus.PAID.value,
        "payment_id": payment_id,
    })
    await request.app.state.log.log_info("order", "Заказ оплачен" if applied else "Повторное подтверждение оплаты проигнорировано", {
        "id": id, "payment_id": payment_id,
    })
    return applied


async def mark_order_failed_service(id: int, request: Request) -> bool:
    applied = await _guarded_update(request, id, {"payment_status": OrderStatus.FAILED.value})
    await request.app.state.log.log_info("order", "Оплата заказа не прошла" if applied else "Заказ уже в терминальном статусе", {"id": id})
    return applied

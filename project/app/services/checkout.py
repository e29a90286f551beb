# app/services/checkout.py

from dataclasses import dataclass
from typing import Mapping, Optional

from fastapi import Request

from app.exceptions import AuthenticityError, ConflictError, GatewayError, NotFoundError, StatusTransitionError
from app.models.order import Order as OrderModel, OrderStatus
from app.schemas.order import CheckoutRequest
from app.services.order import (
    attach_transaction_service,
    create_order_service,
    find_order_by_transaction_service,
    load_order,
    mark_order_failed_service,
    mark_order_paid_service,
    read_order_service,
)
from app.services.payments.base import PaymentConfirmation, PaymentGateway, PaymentSession
from app.utils.money import to_decimal


@dataclass
class CallbackOutcome:
    order_id: Optional[int]
    status: OrderStatus          # статус заказа после обработки (не статус из уведомления)
    applied: bool                # True только для первой доставки, изменившей заказ
    order: Optional[OrderModel] = None


class CheckoutOrchestrator:
    """
    Сценарий оформления заказа для одного HTTP-запроса:

        created -> awaiting_payment -> paid | failed

      - checkout()        создаёт (или переиспользует) заказ и сразу открывает сессию оплаты;
      - start_payment()   (повторно) открывает сессию для существующего pending-заказа;
      - handle_callback() / handle_webhook()  проверяют подпись шлюза и переводят заказ.

    Ошибка шлюза при создании сессии оставляет заказ pending: клиент повторяет
    /create-payment с тем же order_id, новый заказ не создаётся.
    Неверная подпись не меняет ничего, только пишется в журнал безопасности.
    """

    def __init__(self, request: Request, gateway: PaymentGateway | None = None):
        self.request = request
        self.gateway = gateway or request.app.state.gateway
        self.log = request.app.state.log

    # ────────────── Оформление ──────────────
    async def checkout(self, payload: CheckoutRequest) -> tuple[OrderModel, PaymentSession]:
        order, created = await create_order_service(payload, self.request)
        if order.payment_status != OrderStatus.PENDING.value:
            raise StatusTransitionError(f"Заказ уже в статусе {order.payment_status}", order_id=order.order_id)

        session = await self._open_session(order)
        return await load_order(self.request.state.db, order.order_id), session

    async def start_payment(self, order_id: int) -> tuple[OrderModel, PaymentSession]:
        order = await read_order_service(order_id, self.request)
        if order.payment_status != OrderStatus.PENDING.value:
            raise StatusTransitionError(f"Заказ уже в статусе {order.payment_status}", order_id=order_id)

        session = await self._open_session(order)
        return await load_order(self.request.state.db, order_id), session

    async def _open_session(self, order: OrderModel) -> PaymentSession:
        try:
            session = await self.gateway.create_session(order)
        except GatewayError as e:
            e.context["order_id"] = order.order_id
            await self.log.log_error("payment", "Сессия оплаты не создана, заказ остаётся pending", {
                "gateway": self.gateway.name, **e.context,
            })
            raise

        if not await attach_transaction_service(order.order_id, session.session_id, self.request):
            raise ConflictError("Заказ изменился во время создания оплаты", order_id=order.order_id)

        await self.log.log_info("payment", "Сессия оплаты создана", {
            "id": order.order_id,
            "gateway": self.gateway.name,
            "session_id": session.session_id,
            "total": order.total_amount,
        })
        return session

    # ────────────── Уведомления шлюза ──────────────
    async def handle_callback(self, payload: Mapping[str, str], signature: str | None = None) -> CallbackOutcome:
        confirmation = await self._verified("callback", self.gateway.verify_callback(payload, signature))
        return await self._apply(confirmation)

    async def handle_webhook(self, raw_body: bytes, signature: str | None = None) -> CallbackOutcome:
        confirmation = await self._verified("webhook", self.gateway.verify_webhook(raw_body, signature))
        return await self._apply(confirmation)

    async def _verified(self, channel: str, verification) -> PaymentConfirmation:
        try:
            return await verification
        except AuthenticityError as e:
            client = self.request.client.host if self.request.client else None
            await self.log.log_security("Отклонено платёжное уведомление: подпись не прошла проверку", {
                "gateway": self.gateway.name,
                "channel": channel,
                "client": client,
                "reason": e.detail,
                **e.context,
            })
            raise

    async def _resolve(self, confirmation: PaymentConfirmation) -> tuple[OrderModel | None, bool]:
        """
        Заказ по id сессии; для устаревшей попытки оплаты - по order_id из подписанных полей.
        Второй элемент: уведомление относится к текущей сессии заказа.
        """
        if confirmation.session_id:
            order = await find_order_by_transaction_service(confirmation.session_id, self.request)
            if order is not None:
                return order, True
        if confirmation.order_id is not None:
            order = await load_order(self.request.state.db, confirmation.order_id)
            if order is not None and order.transaction_id:
                return order, False
        return None, False

    def _unchanged(self, order: OrderModel | None) -> CallbackOutcome:
        return CallbackOutcome(
            order.order_id if order else None,
            OrderStatus(order.payment_status) if order else OrderStatus.PENDING,
            False,
            order,
        )

    async def _apply(self, confirmation: PaymentConfirmation) -> CallbackOutcome:
        if confirmation.status == OrderStatus.PENDING:
            await self.log.log_info("payment", "Промежуточный статус шлюза, заказ не меняется", {
                "session_id": confirmation.session_id, "status": confirmation.raw_status,
            })
            order, _ = await self._resolve(confirmation)
            return self._unchanged(order)

        order, current = await self._resolve(confirmation)
        if order is None:
            await self.log.log_error("payment", "Уведомление для неизвестной сессии оплаты", {
                "gateway": self.gateway.name,
                "session_id": confirmation.session_id,
                "order_id": confirmation.order_id,
            })
            raise NotFoundError("Заказ для уведомления не найден")

        if not current and confirmation.status != OrderStatus.PAID:
            # отказ по брошенной попытке не должен закрыть заказ, который оплачивают новой сессией
            await self.log.log_warning("payment", "Отказ по устаревшей сессии оплаты проигнорирован", {
                "id": order.order_id,
                "gateway": self.gateway.name,
                "session_id": confirmation.session_id,
                "current_session_id": order.transaction_id,
                "gateway_status": confirmation.raw_status,
            })
            return self._unchanged(order)

        status = confirmation.status
        payment_id = confirmation.payment_id or confirmation.session_id
        if status == OrderStatus.PAID and not payment_id:
            await self.log.log_warning("payment", "Шлюз сообщил об оплате без id платежа, заказ не меняется", {
                "id": order.order_id,
                "gateway": self.gateway.name,
                "gateway_status": confirmation.raw_status,
            })
            return self._unchanged(order)

        if (
            status == OrderStatus.PAID
            and confirmation.amount is not None
            and to_decimal(confirmation.amount) != to_decimal(order.total_amount)
        ):
            await self.log.log_security("Сумма платежа не совпадает с суммой заказа", {
                "id": order.order_id,
                "expected": order.total_amount,
                "received": confirmation.amount,
                "payment_id": confirmation.payment_id,
            })
            status = OrderStatus.FAILED

        if status == OrderStatus.PAID:
            # payment_id обязателен для paid; если шлюз его не прислал - id сессии
            applied = await mark_order_paid_service(order.order_id, payment_id, self.request)
        else:
            applied = await mark_order_failed_service(order.order_id, self.request)

        order = await load_order(self.request.state.db, order.order_id)
        await self.log.log_info("payment", "Уведомление шлюза обработано", {
            "id": order.order_id,
            "gateway": self.gateway.name,
            "gateway_status": confirmation.raw_status,
            "status": order.payment_status,
            "applied": applied,
        })
        return CallbackOutcome(order.order_id, OrderStatus(order.payment_status), applied, order)

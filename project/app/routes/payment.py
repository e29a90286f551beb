# app/routes/payment.py

from urllib.parse import urlencode

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request, status
from fastapi.responses import RedirectResponse

from app.config import settings
from app.exceptions import AuthenticityError, NotFoundError, StorefrontError
from app.models.order import OrderStatus
from app.schemas.order import CheckoutRequest, OrderOut, OrderResponse
from app.schemas.payment import CheckoutResponse, PaymentCreateRequest, PaymentSessionOut, WebhookAck
from app.services.checkout import CallbackOutcome, CheckoutOrchestrator
from app.services.notify import send_order_confirmation

router = APIRouter()


def _session_out(order, session) -> dict:
    return {
        "order_id": order.order_id,
        "redirect_url": session.redirect_url,
        "session_id": session.session_id,
        "method": session.method,
        "form_fields": session.form_fields,
    }


def _schedule_confirmation(outcome: CallbackOutcome, background_tasks: BackgroundTasks, request: Request):
    # письмо только при первом переводе в paid; повторная доставка его не шлёт
    if outcome.applied and outcome.status == OrderStatus.PAID and outcome.order is not None:
        snapshot = OrderResponse.from_model(outcome.order).model_dump()
        background_tasks.add_task(send_order_confirmation, snapshot, request.app.state.log)


def _frontend_redirect(page: str, **params) -> RedirectResponse:
    query = urlencode({k: v for k, v in params.items() if v is not None})
    url = f"{settings.FRONTEND_URL}/{page}" + (f"?{query}" if query else "")
    return RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)


# ────────────── CHECKOUT ──────────────
@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    status_code=status.HTTP_200_OK,
    summary="Оформить заказ и открыть оплату",
    responses={
        400: {"description": "Неверные данные запроса"},
        404: {"description": "Книга не найдена"},
        409: {"description": "Заказ уже оплачен или отменён"},
        502: {"description": "Шлюз недоступен; заказ сохранён как pending, повторите /create-payment"},
    },
)
async def checkout(request: Request, payload: CheckoutRequest):
    try:
        order, session = await CheckoutOrchestrator(request).checkout(payload)
        return {**_session_out(order, session), "order": OrderOut.model_validate(order)}
    except Exception as e:
        await request.app.state.log.log_error("payment", f"Ошибка оформления заказа: {str(e)}")
        raise


# ────────────── CREATE PAYMENT (retry) ──────────────
@router.post(
    "/create-payment",
    response_model=PaymentSessionOut,
    status_code=status.HTTP_200_OK,
    summary="Открыть (повторно) оплату существующего заказа",
    responses={
        404: {"description": "Заказ не найден"},
        409: {"description": "Заказ не в статусе pending"},
        502: {"description": "Шлюз недоступен, заказ остаётся pending"},
    },
)
async def create_payment(request: Request, payload: PaymentCreateRequest):
    try:
        order, session = await CheckoutOrchestrator(request).start_payment(payload.order_id)
        return _session_out(order, session)
    except Exception as e:
        await request.app.state.log.log_error("payment", f"Ошибка создания оплаты: {str(e)}", {"id": payload.order_id})
        raise


# ────────────── CALLBACK (редирект покупателя) ──────────────
async def _handle_redirect(request: Request, gateway_name: str, payload: dict, background_tasks: BackgroundTasks):
    gateway = request.app.state.gateway
    if gateway.name != gateway_name:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Шлюз не активен")

    try:
        outcome = await CheckoutOrchestrator(request, gateway).handle_callback(payload)
    except AuthenticityError:
        return _frontend_redirect("payment-failed", error="hash_mismatch")
    except NotFoundError:
        return _frontend_redirect("payment-failed", error="unknown_order")
    except StorefrontError as e:
        await request.app.state.log.log_error("payment", f"Ошибка обработки callback: {e.detail}", e.context)
        return _frontend_redirect("payment-failed", error="server_error")

    _schedule_confirmation(outcome, background_tasks, request)
    if outcome.status == OrderStatus.PAID:
        return _frontend_redirect("payment-success", orderId=outcome.order_id)
    if outcome.status == OrderStatus.FAILED:
        return _frontend_redirect("payment-failed", orderId=outcome.order_id, error="payment_failed")
    return _frontend_redirect("payment-pending", orderId=outcome.order_id)


@router.post("/payments/payu/callback", summary="surl/furl PayU (форма)", status_code=status.HTTP_303_SEE_OTHER)
async def payu_callback(request: Request, background_tasks: BackgroundTasks):
    form = await request.form()
    return await _handle_redirect(request, "payu", {k: str(v) for k, v in form.items()}, background_tasks)


@router.get("/payments/razorpay/callback", summary="callback_url Razorpay Payment Link", status_code=status.HTTP_303_SEE_OTHER)
async def razorpay_callback(request: Request, background_tasks: BackgroundTasks):
    return await _handle_redirect(request, "razorpay", dict(request.query_params), background_tasks)


@router.post("/payments/phonepe/callback", summary="redirectUrl PhonePe (форма)", status_code=status.HTTP_303_SEE_OTHER)
async def phonepe_callback(request: Request, background_tasks: BackgroundTasks):
    form = await request.form()
    return await _handle_redirect(request, "phonepe", {k: str(v) for k, v in form.items()}, background_tasks)


# ────────────── WEBHOOK ──────────────
@router.post(
    "/payments/webhook",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    summary="Серверное уведомление активного шлюза",
    response_description="Всегда 200, чтобы шлюз не повторял доставку; итог - в поле status",
)
async def payment_webhook(request: Request, background_tasks: BackgroundTasks):
    gateway = request.app.state.gateway
    raw_body = await request.body()
    signature = request.headers.get(gateway.signature_header) if gateway.signature_header else None

    try:
        outcome = await CheckoutOrchestrator(request, gateway).handle_webhook(raw_body, signature)
    except AuthenticityError:
        return WebhookAck(status="rejected")
    except NotFoundError:
        return WebhookAck(status="unknown_order")
    except StorefrontError as e:
        await request.app.state.log.log_error("payment", f"Ошибка обработки webhook: {e.detail}", e.context)
        return WebhookAck(status="error")
    except Exception as e:
        # шлюз получает 200 в любом случае, иначе начнутся повторы
        await request.app.state.log.log_error("payment", f"Непредвиденная ошибка webhook: {e!r}")
        return WebhookAck(status="error")

    _schedule_confirmation(outcome, background_tasks, request)
    return WebhookAck(status=outcome.status.value, applied=outcome.applied, order_id=outcome.order_id)

# app/routes/order.py

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from app.schemas.order import OrderCreate, OrderResponse, OrderStatusUpdate
from app.services.order import (
    create_order_service,
    read_order_service,
    update_order_status_service,
)
from app.routes.auth import require_admin_code

router = APIRouter()

# ────────────── CREATE ──────────────
@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Создать заказ",
    response_description="Возвращает созданный заказ и его строки",
    responses={
        200: {"description": "Повтор той же корзины: возвращён существующий pending-заказ"},
        201: {"description": "Заказ успешно создан"},
        400: {"description": "Неверные данные запроса"},
        404: {"description": "Книга из корзины не найдена"},
        409: {"description": "idempotency_key использован для другой корзины"},
        500: {"description": "Внутренняя ошибка сервера"},
    },
)
async def create_order(request: Request, order: OrderCreate):
    try:
        db_order, created = await create_order_service(order, request)
        body = OrderResponse.from_model(db_order)
        if not created:
            return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump(mode="json"))
        return body
    except Exception as e:
        await request.app.state.log.log_error("order", f"Ошибка при создании заказа: {str(e)}")
        raise


# ────────────── READ ONE ──────────────
@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    status_code=status.HTTP_200_OK,
    summary="Получить заказ по ID",
    response_description="Заказ и строки (название книги - текущее из каталога)",
    responses={
        200: {"description": "Заказ найден и возвращён"},
        404: {"description": "Заказ не найден"},
        500: {"description": "Внутренняя ошибка сервера"},
    },
)
async def read_order(order_id: int, request: Request):
    try:
        return OrderResponse.from_model(await read_order_service(order_id, request))
    except Exception as e:
        await request.app.state.log.log_error("order", f"Ошибка при получении заказа: {str(e)}", {"id": order_id})
        raise


# ────────────── UPDATE STATUS ──────────────
@router.put(
    "/{order_id}/status",
    response_model=OrderResponse,
    status_code=status.HTTP_200_OK,
    summary="Сменить статус заказа (админ)",
    response_description="Заказ после смены статуса",
    responses={
        200: {"description": "Статус обновлён или уже был таким"},
        400: {"description": "Неизвестный статус"},
        401: {"description": "Неверный admincode"},
        404: {"description": "Заказ не найден"},
        409: {"description": "Переход статуса запрещён политикой"},
        500: {"description": "Внутренняя ошибка сервера"},
    },
)
async def update_order_status(
    order_id: int,
    status_update: OrderStatusUpdate,
    request: Request,
    _: bool = Depends(require_admin_code),
):
    try:
        db_order = await update_order_status_service(order_id, status_update.status, request, status_update.override)
        return OrderResponse.from_model(db_order)
    except Exception as e:
        await request.app.state.log.log_error("order", f"Ошибка при обновлении статуса: {str(e)}", {"id": order_id})
        raise

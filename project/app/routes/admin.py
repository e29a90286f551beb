# app/routes/admin.py

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status

from app.routes.auth import require_admin_code
from app.schemas.book import Book, BookBase, BookStatusUpdate
from app.schemas.order import OrderListResponse, OrderResponse
from app.services.book import (
    create_book_service,
    delete_book_service,
    read_books_service,
    set_book_status_service,
    update_book_service,
)
from app.services.order import delete_order_service, read_orders_service

# все маршруты админки требуют заголовок admincode
router = APIRouter(dependencies=[Depends(require_admin_code)])


def _book_form(
    title: Optional[str] = Form(None),
    author: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[Decimal] = Form(None),
    genre: Optional[str] = Form(None),
    language: Optional[str] = Form(None),
) -> BookBase:
    return BookBase(title=title, author=author, description=description, price=price, genre=genre, language=language)


# ────────────── КНИГИ ──────────────
@router.get(
    "/books",
    response_model=List[Book],
    status_code=status.HTTP_200_OK,
    summary="Все книги, включая скрытые",
)
async def admin_read_books(request: Request, skip: int = 0, limit: int = 100):
    return await read_books_service(request, skip, limit, active_only=False)


@router.post(
    "/books",
    response_model=Book,
    status_code=status.HTTP_201_CREATED,
    summary="Добавить книгу (multipart, обложка в поле image)",
    responses={
        400: {"description": "Не заполнены обязательные поля или недопустимый файл"},
        401: {"description": "Неверный admincode"},
        409: {"description": "Книга с таким названием уже есть"},
    },
)
async def admin_create_book(
    request: Request,
    book: BookBase = Depends(_book_form),
    image: Optional[UploadFile] = File(None),
):
    try:
        return await create_book_service(book, image, request)
    except Exception as e:
        await request.app.state.log.log_error("book", f"Ошибка при добавлении книги: {str(e)}")
        raise


@router.put(
    "/books/{book_id}",
    response_model=Book,
    status_code=status.HTTP_200_OK,
    summary="Обновить книгу",
    responses={404: {"description": "Книга не найдена"}, 409: {"description": "Название занято"}},
)
async def admin_update_book(
    book_id: int,
    request: Request,
    book: BookBase = Depends(_book_form),
    image: Optional[UploadFile] = File(None),
):
    try:
        return await update_book_service(book_id, book, image, request)
    except Exception as e:
        await request.app.state.log.log_error("book", f"Ошибка при обновлении книги: {str(e)}", {"id": book_id})
        raise


@router.delete(
    "/books/{book_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Удалить книгу вместе с обложкой",
    responses={404: {"description": "Книга не найдена"}, 409: {"description": "Книга есть в заказах"}},
)
async def admin_delete_book(book_id: int, request: Request):
    try:
        await delete_book_service(book_id, request)
    except Exception as e:
        await request.app.state.log.log_error("book", f"Ошибка при удалении книги: {str(e)}", {"id": book_id})
        raise


@router.patch(
    "/books/{book_id}/status",
    response_model=Book,
    status_code=status.HTTP_200_OK,
    summary="Показать/скрыть книгу в витрине",
)
async def admin_set_book_status(book_id: int, payload: BookStatusUpdate, request: Request):
    return await set_book_status_service(book_id, payload.active, request)


# ────────────── ЗАКАЗЫ ──────────────
@router.get(
    "/orders",
    response_model=OrderListResponse,
    status_code=status.HTTP_200_OK,
    summary="Список заказов со строками",
)
async def admin_read_orders(
    request: Request,
    skip: int = 0,
    limit: int = 50,
    payment_status: Optional[str] = Query(None, alias="status"),
):
    try:
        orders, total = await read_orders_service(request, skip, limit, payment_status)
        return {"orders": [OrderResponse.from_model(o) for o in orders], "total": total}
    except Exception as e:
        await request.app.state.log.log_error("order", f"Ошибка при получении списка заказов: {str(e)}")
        raise


@router.delete(
    "/orders/{order_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Удалить заказ (строки удаляются каскадом)",
    responses={404: {"description": "Заказ не найден"}},
)
async def admin_delete_order(order_id: int, request: Request):
    try:
        await delete_order_service(order_id, request)
    except Exception as e:
        await request.app.state.log.log_error("order", f"Ошибка при удалении заказа: {str(e)}", {"id": order_id})
        raise

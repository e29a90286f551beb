# app/routes/book.py

from fastapi import APIRouter, Request, status
from typing import List
from app.schemas.book import Book
from app.services.book import (
    read_books_service,
    read_featured_books_service,
    read_book_service,
)

router = APIRouter()

# ────────────── READ ALL ──────────────
@router.get(
    "",
    response_model=List[Book],
    status_code=status.HTTP_200_OK,
    summary="Книги витрины",
    response_description="Активные книги, новые сверху",
)
async def read_books(request: Request, skip: int = 0, limit: int = 100):
    return await read_books_service(request, skip, limit)


@router.get(
    "/featured",
    response_model=List[Book],
    status_code=status.HTTP_200_OK,
    summary="Новинки для главной страницы",
)
async def read_featured_books(request: Request):
    return await read_featured_books_service(request)


# ────────────── READ ONE ──────────────
@router.get(
    "/{book_id}",
    response_model=Book,
    status_code=status.HTTP_200_OK,
    summary="Книга по ID",
    responses={404: {"description": "Книга не найдена или скрыта"}},
)
async def read_book(book_id: int, request: Request):
    return await read_book_service(book_id, request)

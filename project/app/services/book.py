# app/services/book.py

from fastapi import Request, UploadFile
from sqlalchemy.exc import IntegrityError
from sqlalchemy.future import select

from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.book import Book as BookModel
from app.models.order import OrderItem as OrderItemModel
from app.schemas.book import BookBase

FEATURED_LIMIT = 8
REQUIRED_FIELDS = ("title", "author", "description", "price", "genre", "language")


async def read_books_service(
    request: Request, skip: int = 0, limit: int = 100, active_only: bool = True
) -> list[BookModel]:
    """
    Список книг, новые сверху. Для витрины - только активные.
    """
    db = request.state.db
    log = request.app.state.log

    query = select(BookModel)
    if active_only:
        query = query.where(BookModel.is_active.is_(True))
    result = await db.execute(query.order_by(BookModel.book_id.desc()).offset(skip).limit(limit))
    books = result.scalars().all()

    await log.log_info("book", f"{len(books)} книг загружено", {"active_only": active_only})
    return list(books)


async def read_featured_books_service(request: Request) -> list[BookModel]:
    return await read_books_service(request, 0, FEATURED_LIMIT, active_only=True)


async def read_book_service(id: int, request: Request, active_only: bool = True) -> BookModel:
    """
    Книга по ID; скрытая книга для витрины считается отсутствующей.
    """
    db = request.state.db
    log = request.app.state.log

    result = await db.execute(select(BookModel).where(BookModel.book_id == id))
    db_book = result.scalar_one_or_none()
    if db_book is None or (active_only and not db_book.is_active):
        await log.log_error("book", "Книга не найдена", {"id": id})
        raise NotFoundError("Книга не найдена", book_id=id)
    return db_book


async def create_book_service(book: BookBase, image: UploadFile | None, request: Request) -> BookModel:
    """
    Добавление книги из админки (обложка - через AssetStore).
    """
    db = request.state.db
    log = request.app.state.log
    assets = request.app.state.assets

    data = book.model_dump()
    missing = [name for name in REQUIRED_FIELDS if data.get(name) in (None, "")]
    if missing:
        raise ValidationError(f"Обязательные поля: {', '.join(missing)}")

    image_url = await assets.save(image) if image is not None else None
    db_book = BookModel(**data, image_url=image_url, is_active=True)
    db.add(db_book)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        await assets.delete(image_url)
        raise ConflictError("Книга с таким названием уже есть") from e
    await db.refresh(db_book)

    await log.log_info("book", "Книга добавлена", {"id": db_book.book_id, "title": db_book.title})
    return db_book


async def update_book_service(id: int, book_update: BookBase, image: UploadFile | None, request: Request) -> BookModel:
    """
    Обновление книги; новая обложка заменяет старую в хранилище.
    Цена в уже созданных заказах не меняется (там снимок).
    """
    db = request.state.db
    log = request.app.state.log
    assets = request.app.state.assets

    db_book = await read_book_service(id, request, active_only=False)

    for key, value in book_update.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(db_book, key, value)

    old_image = None
    if image is not None:
        old_image = db_book.image_url
        db_book.image_url = await assets.save(image)

    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError("Книга с таким названием уже есть") from e
    await assets.delete(old_image)
    await db.refresh(db_book)

    await log.log_info("book", "Книга обновлена", {"id": id})
    return db_book


async def delete_book_service(id: int, request: Request) -> None:
    """
    Удаление книги вместе с обложкой.
    Книгу из существующих заказов удалить нельзя (строки заказов ссылаются на неё), только скрыть.
    """
    db = request.state.db
    log = request.app.state.log
    assets = request.app.state.assets

    db_book = await read_book_service(id, request, active_only=False)
    ordered = await db.execute(select(OrderItemModel.id).where(OrderItemModel.book_id == id).limit(1))
    if ordered.first() is not None:
        raise ConflictError("Книга есть в заказах, её можно только скрыть", book_id=id)

    image_url = db_book.image_url
    await db.delete(db_book)
    await db.commit()
    await assets.delete(image_url)

    await log.log_info("book", "Книга удалена", {"id": id})


async def set_book_status_service(id: int, active: bool, request: Request) -> BookModel:
    db = request.state.db
    log = request.app.state.log

    db_book = await read_book_service(id, request, active_only=False)
    db_book.is_active = active
    await db.commit()
    await db.refresh(db_book)

    await log.log_info("book", "Видимость книги изменена", {"id": id, "active": active})
    return db_book

# app/models/book.py

from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, Numeric
from sqlalchemy.sql import func
from app.utils.database import Base

class Book(Base):
    __tablename__ = "books"

    book_id     = Column(Integer, primary_key=True, index=True)         # автоинкремент
    title       = Column(String, unique=True, nullable=False)           # Название
    author      = Column(String, nullable=True)                         # Автор
    description = Column(Text, nullable=True)                           # Описание
    price       = Column(Numeric(10, 2), nullable=False)                # Цена, ₹
    genre       = Column(String, nullable=True)                         # Жанр
    language    = Column(String, nullable=True)                         # Язык
    image_url   = Column(String, nullable=True)                         # URL из хранилища файлов
    is_active   = Column(Boolean, default=True, nullable=False)         # Показывать в витрине
    created_at  = Column(DateTime(timezone=True), server_default=func.now())

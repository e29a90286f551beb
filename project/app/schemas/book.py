# app/schemas/book.py

from pydantic import BaseModel, Field
from typing import Optional
from decimal import Decimal
from datetime import datetime

# ────────────── Базовая схема ──────────────
class BookBase(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, gt=0)
    genre: Optional[str] = None
    language: Optional[str] = None

class BookStatusUpdate(BaseModel):
    active: bool

# ────────────── Схема для RESPONSE ──────────────
class Book(BookBase):
    book_id: int
    image_url: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None

    model_config = {
        "from_attributes": True
    }

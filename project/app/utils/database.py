# app/utils/database.py

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import NullPool
from app.config import settings

# ────────────── Base для моделей ──────────────
Base = declarative_base()  # базовый класс для всех моделей SQLAlchemy

# ────────────── URL базы данных ──────────────
SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL
IS_SQLITE = SQLALCHEMY_DATABASE_URL.startswith("sqlite")

# ────────────── Асинхронный движок ──────────────
# SQLite (локально и в тестах) без пула: соединение не переживает event loop
engine = create_async_engine(
    SQLALCHEMY_DATABASE_URL,
    echo=False,  # True можно включить для отладки SQL
    **({"poolclass": NullPool} if IS_SQLITE else {}),
)

if IS_SQLITE:
    @event.listens_for(engine.sync_engine, "connect")
    def _enable_sqlite_fk(dbapi_connection, connection_record):
        # без этого SQLite игнорирует ON DELETE CASCADE у order_items
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

# ────────────── Асинхронная сессия ──────────────
# expire_on_commit=False: после commit отдаём объекты в ответ без повторного SELECT
AsyncSessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# ────────────── Инициализация базы данных ──────────────
async def init_db():
    """
    Создаёт таблицы books, orders, order_items (если ещё не созданы).
    Миграции вне рамок проекта: схема меняется вместе с моделями.
    """
    # импорт регистрирует модели в Base.metadata
    from app.models import book, order  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

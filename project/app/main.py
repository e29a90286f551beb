# app/main.py

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError as PydanticValidationError
import uvicorn
from dotenv import load_dotenv
from contextlib import asynccontextmanager

from app.config import settings
from app.exceptions import StorefrontError
from app.utils.log import Log
from app.utils.database import init_db
from app.middleware.db_middleware import DBSessionMiddleware
from app.services.assets import AssetStore
from app.services.payments.registry import get_gateway

# --- загрузка переменных окружения ---
load_dotenv()

# --- sync логгер для раннего старта ---
boot_log = Log()

# ────────────── Lifespan ──────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    boot_log.log_info_sync(target="startup", message="lifespan: startup начат")

    # Инициализация БД
    await init_db()
    boot_log.log_info_sync(target="startup", message="База инициализирована")

    # Активный платёжный шлюз выбирается один раз, по конфигурации
    app.state.gateway = get_gateway(settings)
    app.state.assets = AssetStore()
    boot_log.log_info_sync(target="startup", message="Платёжный шлюз выбран", data={"gateway": app.state.gateway.name})

    app.state.log = Log()
    await app.state.log.log_info(target="startup", message="Async Log инициализирован")

    yield

    # shutdown
    await app.state.log.log_info(target="shutdown", message="Остановка приложения")
    await app.state.log.shutdown()
    boot_log.log_info_sync(target="shutdown", message="Log корректно завершён")

# ────────────── Создаём FastAPI приложение ──────────────
app = FastAPI(title="Books Plaza Storefront API", lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# DB middleware для request.state.db
app.add_middleware(DBSessionMiddleware)

# Обложки книг из AssetStore
app.mount("/uploads", StaticFiles(directory=settings.UPLOADS_DIR, check_dir=False), name="uploads")

# ────────────── Ошибки ──────────────
@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    log = request.app.state.log
    data = {"path": request.url.path, "status": exc.status_code, **exc.context}
    if exc.status_code >= 500:
        await log.log_error("http", f"{type(exc).__name__}: {exc.detail}", data)
    else:
        await log.log_warning("http", f"{type(exc).__name__}: {exc.detail}", data)
    content = {"detail": exc.detail}
    content.update({key: exc.context[key] for key in exc.public_context if key in exc.context})
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
@app.exception_handler(PydanticValidationError)
async def validation_error_handler(request: Request, exc):
    # 422 FastAPI и ошибки схем внутри сервисов отдаём одинаково: 400
    errors = jsonable_encoder(exc.errors(), custom_encoder={Exception: str})
    await request.app.state.log.log_warning("http", "Неверные данные запроса", {"path": request.url.path, "errors": errors})
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": errors})


@app.get("/health")
def health(request: Request):
    return {"status": "ok", "gateway": request.app.state.gateway.name}

# ────────────── Подключение роутов ──────────────
from app.routes import admin, book, order, payment

app.include_router(book.router, prefix="/books", tags=["books"])
app.include_router(order.router, prefix="/orders", tags=["orders"])
app.include_router(payment.router, tags=["payments"])
app.include_router(admin.router, prefix="/admin", tags=["admin"])

# ────────────── Запуск uvicorn ──────────────
if __name__ == "__main__":
    boot_log.log_info_sync(target="startup", message="Запуск uvicorn.run")
    uvicorn.run(
        "app.main:app",
        host="127.0.0.1",
        port=8000,
        log_level="info",
        reload=True
    )

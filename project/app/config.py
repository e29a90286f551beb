# app/config.py

from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./books_plaza.db"   # postgresql+asyncpg://... в проде

    API_URL: str = "http://localhost:8000"          # публичный адрес бэкенда (surl/furl, callback)
    FRONTEND_URL: str = "http://localhost:3000"     # куда редиректим покупателя после оплаты
    ADMIN_CODE: str = "1909"                        # общий секрет заголовка admincode

    # ────────────── Платёжный шлюз ──────────────
    PAYMENT_GATEWAY: str = "payu"                   # payu | razorpay | phonepe
    PAYMENT_TIMEOUT_SECONDS: float = 15.0

    PAYU_MERCHANT_KEY: str = ""
    PAYU_MERCHANT_SALT: str = ""
    PAYU_MODE: str = "test"                         # test | production

    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_WEBHOOK_SECRET: str = ""

    PHONEPE_MERCHANT_ID: str = ""
    PHONEPE_SALT_KEY: str = ""
    PHONEPE_SALT_INDEX: str = "1"
    PHONEPE_MODE: str = "test"                      # test | production

    # ────────────── Заказы ──────────────
    ORDER_REUSE_WINDOW_MINUTES: int = 30            # окно повторного использования pending-заказа

    # ────────────── Файлы и почта ──────────────
    UPLOADS_DIR: str = "uploads"
    SMTP_HOST: str = ""                             # пусто = письма только логируются
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASS: str = ""
    SMTP_FROM: str = "orders@booksplaza.in"

    LOG_DIR: str = "app/log"
    LOG_PRINT: str = "1"

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

settings = Settings()

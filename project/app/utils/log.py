# app/utils/log.py
# Журналы магазина: общий дневной файл + отдельный файл событий безопасности

import os
import datetime
import logging
from decimal import Decimal
from aiologger import Logger
from aiologger.handlers.files import AsyncFileHandler

from app.config import settings

# target с собственным файлом: app/log/2025/10/04.security.log
SEPARATE_TARGETS = ("security",)

# значения этих ключей в лог не попадают никогда
SECRET_KEYS = {"hash", "salt", "key_secret", "razorpay_signature", "signature", "x_verify", "password", "smtp_pass"}


def mask(value, keep: int = 3) -> str:
    """
    Маскирует персональные данные для логов:
    'buyer@mail.in' -> 'buy***', '9876543210' -> '987***'
    """
    if value is None:
        return ""
    value = str(value)
    if len(value) <= keep:
        return "***"
    return f"{value[:keep]}***"


class Log:
    LEVEL_PREFIX = {"info": "", "warning": "WARNING: ", "error": "ERROR: ", "security": "SECURITY: "}

    def __init__(self, log_dir: str | None = None):
        self.log_dir = log_dir or settings.LOG_DIR
        os.makedirs(self.log_dir, exist_ok=True)
        self.loggers: dict[str, tuple[str, Logger]] = {}
        self.log_print = str(settings.LOG_PRINT).lower() in ("1", "true", "yes")

    def build_log_path(self, target: str, now: datetime.datetime) -> str:
        day_dir = os.path.join(self.log_dir, f"{now:%Y}", f"{now:%m}")
        os.makedirs(day_dir, exist_ok=True)
        suffix = f".{target}" if target in SEPARATE_TARGETS else ""
        return os.path.join(day_dir, f"{now:%d}{suffix}.log")

    def render(self, now: datetime.datetime, target: str, level: str, message: str, data: dict | None) -> str:
        line = f"{now:%d.%m.%Y %H:%M:%S} {target}: {self.LEVEL_PREFIX[level]}{message}"
        if data:
            line += f": {self.redact(data)}"
        return line

    def redact(self, obj):
        """
        Приводит данные к печатному виду для журнала:
        Decimal и даты строкой, pydantic через model_dump,
        секреты шлюзов (hash, подписи, соли) заменяются на '***'.
        """
        if obj is None or isinstance(obj, (str, int, float, bool)):
            return obj
        if isinstance(obj, (Decimal, datetime.date)):
            return str(obj)
        if isinstance(obj, dict):
            return {
                k: "***" if str(k).lower() in SECRET_KEYS else self.redact(v)
                for k, v in obj.items()
            }
        if isinstance(obj, (list, tuple, set)):
            return [self.redact(v) for v in obj]
        if hasattr(obj, "model_dump"):
            return self.redact(obj.model_dump())
        return f"<{type(obj).__name__}>"

    # ────────────── Асинхронно (внутри запросов) ──────────────
    async def _logger_for(self, target: str, now: datetime.datetime) -> Logger:
        """aiologger на target; при смене дня файл переоткрывается."""
        path = self.build_log_path(target, now)
        current = self.loggers.get(target)
        if current is not None and current[0] == path:
            return current[1]

        logger = Logger(name=f"books_plaza.{target}")
        logger.add_handler(AsyncFileHandler(filename=path, mode="a", encoding="utf-8"))
        if current is not None:
            await current[1].shutdown()
        self.loggers[target] = (path, logger)
        return logger

    async def write(self, level: str, target: str, message: str, data: dict | None = None, is_console: bool = None):
        now = datetime.datetime.now()
        line = self.render(now, target, level, message, data)
        logger = await self._logger_for(target, now)
        if level == "error":
            await logger.error(line)
        elif level in ("warning", "security"):
            await logger.warning(line)
        else:
            await logger.info(line)

        if self.log_print if is_console is None else is_console:
            print(line)

    async def log_info(self, target: str = "", message: str = "", data: dict | None = None, is_console: bool = None):
        await self.write("info", target, message, data, is_console)

    async def log_warning(self, target: str = "", message: str = "", data: dict | None = None, is_console: bool = None):
        await self.write("warning", target, message, data, is_console)

    async def log_error(self, target: str = "", message: str = "", data: dict | None = None, is_console: bool = True):
        await self.write("error", target, message, data, is_console)

    async def log_security(self, message: str = "", data: dict | None = None):
        """
        Поддельные или подозрительные платёжные уведомления.
        Запись идёт в security-файл и дублируется в журнал payment.
        """
        await self.write("security", "security", message, data, True)
        await self.write("security", "payment", message, data, False)

    # ────────────── Синхронно (старт приложения, до event loop) ──────────────
    def log_info_sync(self, target: str = "", message: str = "", data: dict | None = None, is_console: bool = None):
        now = datetime.datetime.now()
        line = self.render(now, target, "info", message, data)

        logger = logging.getLogger(f"books_plaza.sync.{target}")
        logger.setLevel(logging.INFO)
        logger.propagate = False
        if not logger.handlers:
            handler = logging.FileHandler(self.build_log_path(target, now), mode="a", encoding="utf-8")
            handler.setFormatter(logging.Formatter("%(message)s"))
            logger.addHandler(handler)
        logger.info(line)

        if self.log_print if is_console is None else is_console:
            print(line)

    async def shutdown(self):
        for _, logger in list(self.loggers.values()):
            try:
                await logger.shutdown()
            except Exception as e:
                print(f"Ошибка при закрытии логгера: {e}")
        self.loggers = {}

# app/exceptions.py

"""
Ошибки предметной области магазина.

Каждая ошибка знает свой HTTP-статус и безопасный для клиента текст (detail).
Внутренние подробности (SQL, ответы шлюза) в detail не попадают - только в лог.
"""


class StorefrontError(Exception):
    status_code = 500
    detail = "Внутренняя ошибка сервера"
    public_context: tuple = ()   # ключи context, которые можно вернуть клиенту

    def __init__(self, detail: str | None = None, **context):
        self.detail = detail or self.detail
        self.context = context
        super().__init__(self.detail)


class ValidationError(StorefrontError):
    """Некорректный или неполный запрос, отклонён до любых записей."""
    status_code = 400
    detail = "Неверные данные запроса"


class NotFoundError(StorefrontError):
    status_code = 404
    detail = "Не найдено"


class ConflictError(StorefrontError):
    status_code = 409
    detail = "Конфликт состояния ресурса"


class StatusTransitionError(ConflictError):
    """Недопустимый переход статуса заказа (например, paid -> failed без override)."""
    detail = "Недопустимый переход статуса заказа"
    public_context = ("order_id",)


class GatewayError(StorefrontError):
    """Шлюз недоступен или отклонил запрос. Заказ остаётся в прежнем состоянии."""
    status_code = 502
    detail = "Платёжный шлюз недоступен, попробуйте ещё раз"
    public_context = ("order_id",)   # клиент повторяет /create-payment с этим заказом


class AuthenticityError(StorefrontError):
    """Подпись callback/webhook не сошлась. Состояние не меняется никогда."""
    status_code = 400
    detail = "Подпись платёжного уведомления не прошла проверку"


class PersistenceError(StorefrontError):
    """Сбой транзакции БД, всё откатено."""
    status_code = 500
    detail = "Ошибка при сохранении данных"

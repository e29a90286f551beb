# app/routes/auth.py

import hmac
from fastapi import Header, HTTPException, Request, status
from app.config import settings


async def require_admin_code(request: Request, admincode: str | None = Header(None)):
    """
    Проверяет общий секрет админки в заголовке `admincode`.

    Это не полноценная аутентификация: один статический код на всех администраторов.

    **Статусы:**
    - 401 Unauthorized – заголовок отсутствует или код неверный
    """
    if not admincode or not hmac.compare_digest(admincode.encode(), settings.ADMIN_CODE.encode()):
        client = request.client.host if request.client else None
        await request.app.state.log.log_warning("auth", "Неверный admincode", {"client": client, "path": request.url.path})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized: Invalid admin code")
    return True

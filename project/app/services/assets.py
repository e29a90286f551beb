# app/services/assets.py

import os
import time
import secrets

import aiofiles
import aiofiles.os
from fastapi import UploadFile

from app.config import settings
from app.exceptions import ValidationError

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif"}
CHUNK_SIZE = 1024 * 1024


class AssetStore:
    """
    Хранилище файлов: принимает файл, возвращает постоянный URL.
    Локальная папка UPLOADS_DIR, раздаётся приложением как /uploads.
    """

    def __init__(self, root: str | None = None, public_url: str | None = None):
        self.root = root or settings.UPLOADS_DIR
        self.public_url = (public_url or f"{settings.API_URL}/uploads").rstrip("/")
        os.makedirs(self.root, exist_ok=True)

    def make_name(self, filename: str) -> str:
        ext = os.path.splitext(filename or "")[1].lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise ValidationError(f"Недопустимый тип файла: {ext or 'без расширения'}")
        return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}{ext}"

    async def save(self, upload: UploadFile) -> str:
        name = self.make_name(upload.filename)
        path = os.path.join(self.root, name)
        async with aiofiles.open(path, "wb") as f:
            while chunk := await upload.read(CHUNK_SIZE):
                await f.write(chunk)
        return f"{self.public_url}/{name}"

    async def delete(self, url: str | None) -> None:
        if not url or not url.startswith(self.public_url + "/"):
            return
        path = os.path.join(self.root, os.path.basename(url))
        if os.path.exists(path):
            await aiofiles.os.remove(path)

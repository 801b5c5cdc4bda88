"""
文件上传存储（本地目录）

路径：{organization_id}/{yyyy}/{mm}/{uuid}{ext}，通过 /uploads 静态路由访问
"""

import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

from duka.core.config import settings

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".pdf", ".csv", ".xlsx"}


class UploadRejected(Exception):
    pass


class LocalFileStorage:
    def __init__(self, base_path: Optional[str] = None):
        self.base_path = Path(base_path or settings.UPLOAD_DIR)

    def generate_path(self, organization_id: int, filename: str) -> str:
        ext = Path(filename or "").suffix.lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise UploadRejected(f"不支持的文件类型: {ext or '无扩展名'}")
        now = datetime.utcnow()
        return f"{organization_id}/{now.year}/{now.month:02d}/{uuid.uuid4().hex}{ext}"

    def save(self, file_path: str, content: bytes) -> str:
        if len(content) > settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024:
            raise UploadRejected(f"文件超过 {settings.MAX_UPLOAD_SIZE_MB}MB")
        full_path = self.base_path / file_path
        full_path.parent.mkdir(parents=True, exist_ok=True)
        with open(full_path, "wb") as f:
            f.write(content)
        return str(full_path.relative_to(self.base_path))

    def public_url(self, file_path: str) -> str:
        return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/uploads/{file_path}"


def get_storage() -> LocalFileStorage:
    return LocalFileStorage()

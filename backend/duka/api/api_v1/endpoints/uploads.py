"""文件上传API - 商品图片等"""

import logging
from typing import Any
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from duka.core.config import settings
from duka.core.deps import get_org_context, OrgContext
from duka.services.storage import LocalFileStorage, UploadRejected, get_storage

logger = logging.getLogger(__name__)

router = APIRouter()

CHUNK_SIZE = 1024 * 1024


async def read_limited(file: UploadFile, limit: int) -> bytes:
    """分块读取上传内容，超过 limit 字节立即拒绝"""
    if file.size is not None and file.size > limit:
        raise HTTPException(status_code=413, detail=f"文件超过 {settings.MAX_UPLOAD_SIZE_MB}MB")
    chunks = []
    total = 0
    while True:
        chunk = await file.read(CHUNK_SIZE)
        if not chunk:
            break
        total += len(chunk)
        if total > limit:
            raise HTTPException(status_code=413, detail=f"文件超过 {settings.MAX_UPLOAD_SIZE_MB}MB")
        chunks.append(chunk)
    return b"".join(chunks)


@router.post("/upload")
async def upload_file(
    *,
    ctx: OrgContext = Depends(get_org_context),
    storage: LocalFileStorage = Depends(get_storage),
    file: UploadFile = File(...),
) -> Any:
    """上传文件，返回可公开访问的地址"""
    content = await read_limited(file, settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024)
    if not content:
        raise HTTPException(status_code=400, detail="文件为空")
    try:
        path = storage.generate_path(ctx.organization_id, file.filename)
        saved = storage.save(path, content)
    except UploadRejected as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"文件上传: {file.filename} -> {saved} ({len(content)} bytes)")
    return {"url": storage.public_url(saved), "path": saved, "size": len(content)}

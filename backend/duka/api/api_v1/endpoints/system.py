"""系统管理API - 定时任务状态"""

from typing import Any
from fastapi import APIRouter

from duka.services.scheduler import get_scheduler_status

router = APIRouter()


@router.get("/scheduler")
async def scheduler_status() -> Any:
    """定时任务调度器状态"""
    return get_scheduler_status()

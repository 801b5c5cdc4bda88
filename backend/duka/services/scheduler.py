"""
定时任务调度器服务
使用 APScheduler 执行容量对账、过期移动支付清理等定时任务
"""

import logging
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from duka.core.config import settings
from duka.db.session import SessionLocal
from duka.services.sales import expire_stale_checkouts
from duka.services.stock_ledger import reconcile_all

logger = logging.getLogger(__name__)

# 全局调度器实例
scheduler: Optional[AsyncIOScheduler] = None


async def reconcile_capacity():
    """按批次存放位置重新计算全部仓库的容量计数"""
    try:
        async with SessionLocal() as db:
            results = await reconcile_all(db)
            await db.commit()
        changed = [r for r in results if r.before != r.after or r.units_changed or r.zones_changed or r.positions_changed]
        logger.info(f"✅ 容量对账完成: {len(results)} 个地点，{len(changed)} 个有更正")
    except Exception as e:
        logger.error(f"❌ 容量对账失败: {str(e)}")


async def expire_pending_checkouts():
    """超时未回调的 M-Pesa 收银记为失败并冲回库存"""
    try:
        async with SessionLocal() as db:
            count = await expire_stale_checkouts(db, settings.PENDING_CHECKOUT_EXPIRY_MINUTES)
            await db.commit()
        if count:
            logger.info(f"🧹 过期移动支付: {count} 笔已记为失败")
    except Exception as e:
        logger.error(f"❌ 清理过期移动支付失败: {str(e)}")


def init_scheduler():
    """初始化并启动调度器"""
    global scheduler

    if not settings.SCHEDULER_ENABLED:
        logger.info("⏰ 定时任务已禁用")
        return

    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        reconcile_capacity,
        trigger=CronTrigger(
            hour=settings.CAPACITY_RECONCILE_HOUR,
            minute=settings.CAPACITY_RECONCILE_MINUTE
        ),
        id="reconcile_capacity",
        name="仓库容量对账",
        replace_existing=True
    )
    scheduler.add_job(
        expire_pending_checkouts,
        trigger=IntervalTrigger(minutes=max(1, settings.PENDING_CHECKOUT_EXPIRY_MINUTES // 3)),
        id="expire_pending_checkouts",
        name="清理过期移动支付",
        replace_existing=True
    )

    scheduler.start()
    logger.info(
        f"⏰ 定时任务调度器已启动 - 容量对账时间: 每天 "
        f"{settings.CAPACITY_RECONCILE_HOUR:02d}:{settings.CAPACITY_RECONCILE_MINUTE:02d}"
    )


def shutdown_scheduler():
    """关闭调度器"""
    global scheduler
    if scheduler:
        scheduler.shutdown()
        scheduler = None
        logger.info("⏰ 定时任务调度器已关闭")


def get_scheduler_status() -> dict:
    """获取调度器状态"""
    if not scheduler:
        return {
            "enabled": settings.SCHEDULER_ENABLED,
            "running": False,
            "jobs": []
        }

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None
        })

    return {
        "enabled": settings.SCHEDULER_ENABLED,
        "running": scheduler.running,
        "jobs": jobs
    }

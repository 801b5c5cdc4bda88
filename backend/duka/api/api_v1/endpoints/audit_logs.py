"""操作日志API"""

from typing import Any, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from duka.core.deps import get_db, get_org_context, OrgContext
from duka.models.audit_log import AuditLog
from duka.schemas.audit_log import AuditLogResponse, AuditLogListResponse

router = APIRouter()


def build_log_response(log: AuditLog) -> AuditLogResponse:
    """构建日志响应"""
    return AuditLogResponse(
        id=log.id,
        member_id=log.member_id,
        action=log.action,
        resource_type=log.resource_type,
        resource_id=log.resource_id,
        resource_name=log.resource_name,
        description=log.description,
        old_value=log.old_value,
        new_value=log.new_value,
        created_at=log.created_at,
        action_display=log.action_display,
        member_name=log.member.name if log.member else "",
    )


def parse_date(value: Optional[str], field: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{field} 日期格式应为 YYYY-MM-DD")


@router.get("/", response_model=AuditLogListResponse)
async def list_logs(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    action: Optional[str] = Query(None),
    resource_type: Optional[str] = Query(None),
    resource_id: Optional[int] = Query(None),
    member_id: Optional[int] = Query(None),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None)) -> Any:
    """获取操作日志列表"""
    conditions = [AuditLog.organization_id == ctx.organization_id]
    if action:
        conditions.append(AuditLog.action == action)
    if resource_type:
        conditions.append(AuditLog.resource_type == resource_type)
    if resource_id:
        conditions.append(AuditLog.resource_id == resource_id)
    if member_id:
        conditions.append(AuditLog.member_id == member_id)
    start = parse_date(start_date, "start_date")
    if start:
        conditions.append(AuditLog.created_at >= start)
    end = parse_date(end_date, "end_date")
    if end:
        conditions.append(AuditLog.created_at <= end)

    total = (await db.execute(select(func.count(AuditLog.id)).where(and_(*conditions)))).scalar() or 0

    query = (select(AuditLog).options(selectinload(AuditLog.member))
             .where(and_(*conditions))
             .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
             .offset((page - 1) * limit).limit(limit))
    logs = (await db.execute(query)).scalars().all()

    return AuditLogListResponse(
        data=[build_log_response(log) for log in logs],
        total=total,
        page=page,
        limit=limit
    )

"""库存查询API - 库存水位、库存流水"""

from typing import Any, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from duka.core.deps import get_db, get_org_context, OrgContext
from duka.models.stock_movement import StockMovement, MOVEMENT_TYPES
from duka.schemas.stock_batch import StockLevelListResponse, StockMovementResponse, StockMovementListResponse
from duka.services.stock_levels import STATUSES, SORT_FIELDS, query_stock_levels

router = APIRouter()


@router.get("/levels", response_model=StockLevelListResponse)
async def get_stock_levels(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    warehouse_id: Optional[int] = Query(None, alias="warehouseId", description="仓库筛选"),
    category_id: Optional[int] = Query(None, alias="categoryId", description="分类筛选"),
    status: Optional[str] = Query(None, description="out_of_stock / low_stock / overstock / normal / all"),
    search: Optional[str] = Query(None, description="搜索品名/SKU/描述"),
    sort_by: str = Query("name", alias="sortBy"),
    sort_order: str = Query("asc", alias="sortOrder", pattern=r"^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
) -> Any:
    """库存水位报表（按商品、按地点）"""
    if status and status != "all" and status not in STATUSES:
        raise HTTPException(status_code=400, detail=f"无效的状态：{status}")
    if sort_by not in SORT_FIELDS:
        raise HTTPException(status_code=400, detail=f"无效的排序字段：{sort_by}")

    items, total = await query_stock_levels(
        db, ctx.organization,
        warehouse_id=warehouse_id,
        category_id=category_id,
        status=status,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return StockLevelListResponse(data=items, total=total, page=page, limit=limit)


@router.get("/movements", response_model=StockMovementListResponse)
async def list_movements(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    batch_id: Optional[int] = Query(None),
    product_id: Optional[int] = Query(None),
    location_id: Optional[int] = Query(None, description="来源或目标地点"),
    movement_type: Optional[str] = Query(None, description="RECEIPT / MOVE / SALE / RETURN / ADJUSTMENT"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
) -> Any:
    """库存流水"""
    if movement_type and movement_type not in MOVEMENT_TYPES:
        raise HTTPException(status_code=400, detail=f"无效的流水类型：{movement_type}")

    conditions = [StockMovement.organization_id == ctx.organization_id]
    if batch_id:
        conditions.append(StockMovement.batch_id == batch_id)
    if product_id:
        conditions.append(StockMovement.product_id == product_id)
    if location_id:
        conditions.append(or_(
            StockMovement.from_location_id == location_id,
            StockMovement.to_location_id == location_id,
        ))
    if movement_type:
        conditions.append(StockMovement.movement_type == movement_type)
    if start_date:
        conditions.append(StockMovement.created_at >= start_date)
    if end_date:
        conditions.append(StockMovement.created_at <= end_date)
    query = select(StockMovement).where(and_(*conditions))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar()

    query = query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).offset((page - 1) * limit).limit(limit)
    movements = (await db.execute(query)).scalars().all()
    return StockMovementListResponse(
        data=[StockMovementResponse.model_validate(m) for m in movements],
        total=total, page=page, limit=limit,
    )

"""
仓库管理API - 仓库/库区/存储单元/货位，容量报告与对账
"""

from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func, and_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from duka.core.deps import get_db, get_org_context, OrgContext
from duka.models.product import Category, Product
from duka.models.stock_batch import StockBatch
from duka.models.warehouse import InventoryLocation, StorageZone, StorageUnit, StoragePosition
from duka.schemas.warehouse import (
    LocationCreate, LocationUpdate, LocationResponse, LocationListResponse,
    ZoneCreate, ZoneResponse, UnitCreate, UnitResponse, PositionCreate, PositionResponse,
    CapacityReport, ReconcileResult,
)
from duka.services.audit import create_audit_log
from duka.services.capacity import build_capacity_report
from duka.services.numbering import generate_code
from duka.services.stock_ledger import reconcile_location

router = APIRouter()

LOCATION_PREFIX = {
    "WAREHOUSE": "WH",
    "RETAIL_SHOP": "RS",
    "KITCHEN": "KT",
    "COLD_ROOM": "CR",
}


async def get_location_or_404(db: AsyncSession, location_id: int, organization_id: int) -> InventoryLocation:
    location = await db.get(InventoryLocation, location_id)
    if not location or location.organization_id != organization_id:
        raise HTTPException(status_code=404, detail="仓库不存在")
    return location


async def clear_default(db: AsyncSession, organization_id: int, keep_id: Optional[int] = None):
    """一个组织只有一个默认地点"""
    stmt = update(InventoryLocation).where(
        InventoryLocation.organization_id == organization_id,
        InventoryLocation.is_default == True,
    )
    if keep_id:
        stmt = stmt.where(InventoryLocation.id != keep_id)
    await db.execute(stmt.values(is_default=False))


async def position_occupants(db: AsyncSession, location_id: int) -> Dict[int, StockBatch]:
    """货位 -> 当前存放的批次"""
    result = await db.execute(
        select(StockBatch).where(
            StockBatch.location_id == location_id,
            StockBatch.position_id.isnot(None),
            StockBatch.current_quantity > 0,
        )
    )
    return {b.position_id: b for b in result.scalars().all()}


def build_position_response(position: StoragePosition, occupants: Dict[int, StockBatch]) -> PositionResponse:
    resp = PositionResponse.model_validate(position)
    batch = occupants.get(position.id)
    if batch:
        resp.batch_id = batch.id
        resp.batch_number = batch.batch_number
    return resp


def build_unit_response(unit: StorageUnit, occupants: Dict[int, StockBatch]) -> UnitResponse:
    return UnitResponse(
        id=unit.id,
        location_id=unit.location_id,
        zone_id=unit.zone_id,
        name=unit.name,
        unit_type=unit.unit_type,
        capacity=unit.capacity,
        capacity_used=unit.capacity_used,
        capacity_unit=unit.capacity_unit,
        is_active=unit.is_active,
        positions=[build_position_response(p, occupants) for p in unit.positions],
    )


# ===== 仓库 =====

@router.get("/", response_model=LocationListResponse)
async def list_locations(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    location_type: Optional[str] = Query(None, description="类型筛选"),
    is_active: Optional[bool] = Query(None),
) -> Any:
    """获取仓库列表"""
    conditions = [InventoryLocation.organization_id == ctx.organization_id]
    if location_type:
        conditions.append(InventoryLocation.location_type == location_type)
    if is_active is not None:
        conditions.append(InventoryLocation.is_active == is_active)
    query = select(InventoryLocation).where(and_(*conditions))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar()

    query = query.order_by(InventoryLocation.code).offset((page - 1) * limit).limit(limit)
    locations = (await db.execute(query)).scalars().all()
    return LocationListResponse(
        data=[LocationResponse.model_validate(l) for l in locations],
        total=total, page=page, limit=limit,
    )


@router.post("/", response_model=LocationResponse)
async def create_location(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    location_in: LocationCreate,
) -> Any:
    """创建仓库（编码自动生成）"""
    if location_in.is_default:
        await clear_default(db, ctx.organization_id)
    location = InventoryLocation(
        **location_in.model_dump(),
        code=await generate_code(
            db, InventoryLocation, LOCATION_PREFIX[location_in.location_type], ctx.organization_id
        ),
        organization_id=ctx.organization_id,
    )
    db.add(location)
    await db.flush()
    await create_audit_log(
        db, ctx.organization_id, ctx.member_id, "create", "location",
        resource_id=location.id, resource_name=location.name,
        description=f"创建仓库 {location.code}",
    )
    await db.commit()
    await db.refresh(location)
    return LocationResponse.model_validate(location)


@router.get("/{location_id}", response_model=LocationResponse)
async def get_location(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    location_id: int,
) -> Any:
    """获取仓库详情"""
    return LocationResponse.model_validate(await get_location_or_404(db, location_id, ctx.organization_id))


@router.put("/{location_id}", response_model=LocationResponse)
async def update_location(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    location_id: int,
    location_in: LocationUpdate,
) -> Any:
    """更新仓库"""
    location = await get_location_or_404(db, location_id, ctx.organization_id)
    update_data = location_in.model_dump(exclude_unset=True)
    if update_data.get("is_default"):
        await clear_default(db, ctx.organization_id, keep_id=location.id)
    for field, value in update_data.items():
        setattr(location, field, value)
    await db.commit()
    await db.refresh(location)
    return LocationResponse.model_validate(location)


@router.delete("/{location_id}")
async def delete_location(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    location_id: int,
) -> Any:
    """删除仓库（有批次时只能停用）"""
    location = await get_location_or_404(db, location_id, ctx.organization_id)
    batch_count = (await db.execute(
        select(func.count(StockBatch.id)).where(StockBatch.location_id == location_id)
    )).scalar()
    if batch_count:
        raise HTTPException(status_code=400, detail="仓库已有库存批次，只能停用")
    await create_audit_log(
        db, ctx.organization_id, ctx.member_id, "delete", "location",
        resource_id=location.id, resource_name=location.name,
        description=f"删除仓库 {location.code}",
    )
    await db.delete(location)
    await db.commit()
    return {"message": "删除成功"}


# ===== 库区 =====

@router.get("/{location_id}/zones", response_model=List[ZoneResponse])
async def list_zones(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    location_id: int,
) -> Any:
    """获取仓库的库区"""
    await get_location_or_404(db, location_id, ctx.organization_id)
    zones = (await db.execute(
        select(StorageZone).where(StorageZone.location_id == location_id).order_by(StorageZone.id)
    )).scalars().all()
    return [ZoneResponse.model_validate(z) for z in zones]


@router.post("/{location_id}/zones", response_model=ZoneResponse)
async def create_zone(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    location_id: int,
    zone_in: ZoneCreate,
) -> Any:
    """创建库区"""
    await get_location_or_404(db, location_id, ctx.organization_id)
    zone = StorageZone(**zone_in.model_dump(), location_id=location_id)
    db.add(zone)
    await db.commit()
    await db.refresh(zone)
    return ZoneResponse.model_validate(zone)


# ===== 存储单元 / 货位 =====

@router.get("/{location_id}/units", response_model=List[UnitResponse])
async def list_units(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    location_id: int,
    zone_id: Optional[int] = Query(None),
) -> Any:
    """获取存储单元（含货位及存放批次）"""
    await get_location_or_404(db, location_id, ctx.organization_id)
    query = (select(StorageUnit).options(selectinload(StorageUnit.positions))
             .where(StorageUnit.location_id == location_id))
    if zone_id:
        query = query.where(StorageUnit.zone_id == zone_id)
    units = (await db.execute(query.order_by(StorageUnit.id))).scalars().all()
    occupants = await position_occupants(db, location_id)
    return [build_unit_response(u, occupants) for u in units]


@router.post("/{location_id}/units", response_model=UnitResponse)
async def create_unit(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    location_id: int,
    unit_in: UnitCreate,
) -> Any:
    """创建存储单元（可批量生成货位）"""
    await get_location_or_404(db, location_id, ctx.organization_id)
    if unit_in.zone_id:
        zone = await db.get(StorageZone, unit_in.zone_id)
        if not zone or zone.location_id != location_id:
            raise HTTPException(status_code=400, detail="库区不属于该仓库")
    if len(set(unit_in.positions)) != len(unit_in.positions):
        raise HTTPException(status_code=400, detail="货位编号重复")

    unit = StorageUnit(
        **unit_in.model_dump(exclude={"positions"}),
        location_id=location_id,
        positions=[StoragePosition(identifier=identifier) for identifier in unit_in.positions],
    )
    db.add(unit)
    await db.commit()

    result = await db.execute(
        select(StorageUnit).options(selectinload(StorageUnit.positions))
        .where(StorageUnit.id == unit.id)
        .execution_options(populate_existing=True)
    )
    return build_unit_response(result.scalar_one(), {})


@router.post("/{location_id}/units/{unit_id}/positions", response_model=PositionResponse)
async def create_position(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    location_id: int,
    unit_id: int,
    position_in: PositionCreate,
) -> Any:
    """在存储单元上添加货位"""
    await get_location_or_404(db, location_id, ctx.organization_id)
    unit = await db.get(StorageUnit, unit_id)
    if not unit or unit.location_id != location_id:
        raise HTTPException(status_code=404, detail="存储单元不存在")
    existing = await db.execute(select(StoragePosition).where(
        StoragePosition.storage_unit_id == unit_id,
        StoragePosition.identifier == position_in.identifier,
    ))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=400, detail=f"货位 {position_in.identifier} 已存在")

    position = StoragePosition(storage_unit_id=unit_id, identifier=position_in.identifier)
    db.add(position)
    await db.commit()
    await db.refresh(position)
    return PositionResponse.model_validate(position)


@router.get("/{location_id}/positions", response_model=List[PositionResponse])
async def list_positions(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    location_id: int,
    available: Optional[bool] = Query(None, description="只看空闲/占用货位"),
) -> Any:
    """获取仓库的货位（移库选择目标货位用）"""
    await get_location_or_404(db, location_id, ctx.organization_id)
    query = (select(StoragePosition).join(StorageUnit)
             .where(StorageUnit.location_id == location_id))
    if available is not None:
        query = query.where(StoragePosition.is_occupied == (not available))
    positions = (await db.execute(query.order_by(StoragePosition.identifier))).scalars().all()
    occupants = await position_occupants(db, location_id)
    return [build_position_response(p, occupants) for p in positions]


# ===== 容量 =====

@router.get("/{location_id}/capacity", response_model=CapacityReport)
async def get_capacity(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    location_id: int,
) -> Any:
    """仓库容量报告（仓库/库区/存储单元使用率 + 分类占比）"""
    result = await db.execute(
        select(InventoryLocation)
        .options(selectinload(InventoryLocation.zones), selectinload(InventoryLocation.units))
        .where(
            InventoryLocation.id == location_id,
            InventoryLocation.organization_id == ctx.organization_id,
        )
        .execution_options(populate_existing=True)
    )
    location = result.scalar_one_or_none()
    if not location:
        raise HTTPException(status_code=404, detail="仓库不存在")

    category_rows = (await db.execute(
        select(Category.id, Category.name, func.sum(StockBatch.current_quantity))
        .select_from(StockBatch)
        .join(Product, StockBatch.product_id == Product.id)
        .outerjoin(Category, Product.category_id == Category.id)
        .where(
            StockBatch.location_id == location_id,
            StockBatch.current_quantity > 0,
        )
        .group_by(Category.id, Category.name)
    )).all()

    return build_capacity_report(location, category_rows)


@router.post("/{location_id}/reconcile-capacity", response_model=ReconcileResult)
async def reconcile_capacity(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    location_id: int,
) -> Any:
    """按批次重新计算容量计数"""
    location = await get_location_or_404(db, location_id, ctx.organization_id)
    result = await reconcile_location(db, location)
    await create_audit_log(
        db, ctx.organization_id, ctx.member_id, "reconcile", "location",
        resource_id=location.id, resource_name=location.name,
        description=f"容量对账 {result.before} -> {result.after}",
    )
    await db.commit()
    return result

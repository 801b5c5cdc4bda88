"""
库存批次API - 入库、查询、移库、调整

批次的数量变动都会：
1. 在同一事务内更新容量计数和货位占用
2. 记录库存流水
3. 写入审计日志
"""

import logging
from datetime import datetime
from typing import Any, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from duka.core.deps import get_db, get_org_context, require_member, OrgContext
from duka.models.party import Party
from duka.models.product import Product, ProductVariant
from duka.models.stock_batch import StockBatch
from duka.models.stock_movement import StockMovement, StockAdjustment
from duka.models.warehouse import InventoryLocation, StorageUnit, StoragePosition
from duka.schemas.stock_batch import (
    StockBatchCreate, StockBatchMove, StockBatchAdjust, StockBatchResponse, StockBatchListResponse,
    MoveResult, StockAdjustmentResponse,
)
from duka.services.audit import create_audit_log
from duka.services.inventory_move import MoveRejected, NOOP, move_batch
from duka.services.numbering import generate_batch_number
from duka.services.stock_ledger import apply_quantity_change, claim_position, occupant

logger = logging.getLogger(__name__)

router = APIRouter()


def build_batch_response(batch: StockBatch) -> StockBatchResponse:
    """构建批次响应（需已加载商品/地点/货位/供应商）"""
    resp = StockBatchResponse.model_validate(batch)
    resp.product_name = batch.product.name if batch.product else ""
    resp.product_sku = batch.product.sku if batch.product else ""
    resp.location_name = batch.location.name if batch.location else ""
    resp.position_identifier = batch.position.identifier if batch.position else ""
    resp.supplier_name = batch.supplier.name if batch.supplier else ""
    return resp


def batch_query():
    return select(StockBatch).options(
        selectinload(StockBatch.product),
        selectinload(StockBatch.location),
        selectinload(StockBatch.position),
        selectinload(StockBatch.supplier),
    )


async def load_batch(db: AsyncSession, batch_id: int, organization_id: int) -> StockBatch:
    result = await db.execute(
        batch_query()
        .where(StockBatch.id == batch_id, StockBatch.organization_id == organization_id)
        .execution_options(populate_existing=True)
    )
    batch = result.scalar_one_or_none()
    if not batch:
        raise HTTPException(status_code=404, detail="批次不存在")
    return batch


@router.get("/", response_model=StockBatchListResponse)
async def list_batches(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    product_id: Optional[int] = Query(None),
    location_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None, description="active / partial / depleted"),
    in_stock: Optional[bool] = Query(None, description="只看有库存的批次"),
    search: Optional[str] = Query(None, description="搜索批次号"),
) -> Any:
    """获取批次列表"""
    conditions = [StockBatch.organization_id == ctx.organization_id]
    if product_id:
        conditions.append(StockBatch.product_id == product_id)
    if location_id:
        conditions.append(StockBatch.location_id == location_id)
    if status:
        conditions.append(StockBatch.status == status)
    if in_stock:
        conditions.append(StockBatch.current_quantity > 0)
    if search:
        conditions.append(StockBatch.batch_number.contains(search))
    query = batch_query().where(and_(*conditions))

    total = (await db.execute(
        select(func.count()).select_from(select(StockBatch.id).where(and_(*conditions)).subquery())
    )).scalar()

    query = query.order_by(StockBatch.received_date.desc(), StockBatch.id.desc()).offset((page - 1) * limit).limit(limit)
    batches = (await db.execute(query)).scalars().all()
    return StockBatchListResponse(
        data=[build_batch_response(b) for b in batches],
        total=total, page=page, limit=limit,
    )


@router.post("/", response_model=StockBatchResponse)
async def receive_batch(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    batch_in: StockBatchCreate,
) -> Any:
    """入库：创建批次并放到货位"""
    org_id = ctx.organization_id

    product = await db.get(Product, batch_in.product_id)
    if not product or product.organization_id != org_id:
        raise HTTPException(status_code=400, detail="商品不存在")
    if batch_in.variant_id:
        variant = await db.get(ProductVariant, batch_in.variant_id)
        if not variant or variant.product_id != product.id:
            raise HTTPException(status_code=400, detail="变体不属于该商品")

    location = await db.get(InventoryLocation, batch_in.location_id)
    if not location or location.organization_id != org_id:
        raise HTTPException(status_code=400, detail="存放地点不存在")

    if batch_in.supplier_id:
        supplier = await db.get(Party, batch_in.supplier_id)
        if not supplier or supplier.organization_id != org_id:
            raise HTTPException(status_code=400, detail="供应商不存在")

    if batch_in.position_id:
        position = await db.get(StoragePosition, batch_in.position_id)
        unit = await db.get(StorageUnit, position.storage_unit_id) if position else None
        if not unit or unit.location_id != location.id:
            raise HTTPException(status_code=400, detail="货位不属于该地点")
        if await occupant(db, position.id) is not None or not await claim_position(db, position):
            raise HTTPException(status_code=409, detail=f"货位 {position.identifier} 已被占用")

    batch = StockBatch(
        organization_id=org_id,
        batch_number=await generate_batch_number(db, org_id),
        product_id=product.id,
        variant_id=batch_in.variant_id,
        location_id=location.id,
        position_id=batch_in.position_id,
        supplier_id=batch_in.supplier_id,
        initial_quantity=batch_in.quantity,
        current_quantity=batch_in.quantity,
        purchase_price=batch_in.purchase_price,
        expiry_date=batch_in.expiry_date,
        received_date=batch_in.received_date or datetime.utcnow(),
        status="active",
        notes=batch_in.notes,
        created_by=ctx.member_id,
    )
    db.add(batch)
    await db.flush()

    await apply_quantity_change(db, batch, 0, batch.current_quantity)

    db.add(StockMovement(
        organization_id=org_id,
        batch_id=batch.id,
        product_id=product.id,
        movement_type="RECEIPT",
        quantity=batch.current_quantity,
        to_location_id=location.id,
        to_position_id=batch.position_id,
        reference=batch.batch_number,
        member_id=ctx.member_id,
    ))
    await create_audit_log(
        db, org_id, ctx.member_id, "receive", "batch",
        resource_id=batch.id, resource_name=batch.batch_number,
        description=f"入库 {product.name} x{batch.current_quantity} 到 {location.name}",
        new_value={"quantity": batch.current_quantity, "purchase_price": str(batch.purchase_price)},
    )
    await db.commit()

    logger.info(f"入库: {batch.batch_number} {product.sku} x{batch.current_quantity}")
    return build_batch_response(await load_batch(db, batch.id, org_id))


@router.get("/{batch_id}", response_model=StockBatchResponse)
async def get_batch(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    batch_id: int,
) -> Any:
    """获取批次详情"""
    return build_batch_response(await load_batch(db, batch_id, ctx.organization_id))


@router.post("/{batch_id}/move", response_model=MoveResult)
async def move_stock_batch(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_member),
    batch_id: int,
    move_in: StockBatchMove,
) -> Any:
    """移库：整批或部分移动到另一个货位"""
    try:
        outcome = await move_batch(
            db,
            stock_batch_id=batch_id,
            new_position_id=move_in.new_position_id,
            quantity=move_in.quantity,
            actor_id=ctx.member_id,
            organization_id=ctx.organization_id,
            notes=move_in.notes,
        )
    except MoveRejected as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    await db.commit()

    source = await load_batch(db, outcome.source.id, ctx.organization_id)
    created = None
    if outcome.created is not None:
        created = build_batch_response(await load_batch(db, outcome.created.id, ctx.organization_id))
    return MoveResult(source=build_batch_response(source), created=created, noop=outcome.kind == NOOP)


@router.post("/{batch_id}/adjust", response_model=StockAdjustmentResponse)
async def adjust_batch(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_member),
    batch_id: int,
    adjust_in: StockBatchAdjust,
) -> Any:
    """库存调整（报损/报溢/盘点更正）"""
    if adjust_in.quantity_change == 0:
        raise HTTPException(status_code=400, detail="调整数量不能为 0")

    batch = await load_batch(db, batch_id, ctx.organization_id)
    before = batch.current_quantity
    after = before + adjust_in.quantity_change
    if after < 0 and not ctx.organization.allow_negative_stock:
        raise HTTPException(status_code=400, detail=f"调整后数量为 {after}，组织不允许负库存")

    batch.current_quantity = after
    batch.update_status()
    await apply_quantity_change(db, batch, before, after)

    adjustment = StockAdjustment(
        organization_id=ctx.organization_id,
        batch_id=batch.id,
        quantity_change=adjust_in.quantity_change,
        quantity_before=before,
        quantity_after=after,
        reason=adjust_in.reason,
        notes=adjust_in.notes,
        member_id=ctx.member_id,
    )
    db.add(adjustment)
    await db.flush()

    db.add(StockMovement(
        organization_id=ctx.organization_id,
        batch_id=batch.id,
        product_id=batch.product_id,
        movement_type="ADJUSTMENT",
        quantity=adjust_in.quantity_change,
        from_location_id=batch.location_id if adjust_in.quantity_change < 0 else None,
        to_location_id=batch.location_id if adjust_in.quantity_change > 0 else None,
        reference=f"ADJ{adjustment.id}",
        notes=adjustment.reason_display,
        member_id=ctx.member_id,
    ))
    await create_audit_log(
        db, ctx.organization_id, ctx.member_id, "adjust", "batch",
        resource_id=batch.id, resource_name=batch.batch_number,
        description=f"库存调整 {adjust_in.quantity_change:+d}（{adjustment.reason_display}）",
        old_value={"quantity": before},
        new_value={"quantity": after},
    )
    await db.commit()
    await db.refresh(adjustment)
    return StockAdjustmentResponse.model_validate(adjustment)

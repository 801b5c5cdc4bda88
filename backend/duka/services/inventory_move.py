"""
移库 - 把批次的一部分或全部移到另一个货位

校验在写入路径上完成：
- 数量必须大于 0 且不超过批次当前数量
- 目标货位不能被其他批次占用（条件更新占位，并发移入同一货位只有一个成功）
- 目标货位就是当前货位时视为原地移库，不做任何变更

整批移动：批次换到新货位（地点跟随货位所属存储单元）
部分移动：原批次扣减，在目标货位拆出一个新批次（批次号加 -M<n> 后缀）
调用方负责提交事务。
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from duka.models.stock_batch import StockBatch
from duka.models.stock_movement import StockMovement
from duka.models.warehouse import InventoryLocation, StorageUnit, StoragePosition
from duka.services.audit import create_audit_log
from duka.services.numbering import split_batch_number
from duka.services.stock_ledger import claim_position, shift_capacity, occupant

logger = logging.getLogger(__name__)

NOOP = "noop"
FULL = "full"
PARTIAL = "partial"


class MoveRejected(Exception):
    """移库被拒绝"""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class MoveNotFound(MoveRejected):
    def __init__(self, message: str):
        super().__init__(message, status_code=404)


def validate_move(current_quantity: int, quantity: int, current_position_id: Optional[int],
                  target_position_id: int, target_occupied: bool) -> str:
    """校验移库请求，返回移库方式（noop / full / partial）"""
    if quantity is None or quantity <= 0:
        raise MoveRejected("移库数量必须大于 0")
    if quantity > current_quantity:
        raise MoveRejected(f"移库数量 {quantity} 超过批次当前数量 {current_quantity}")
    if target_position_id == current_position_id:
        return NOOP
    if target_occupied:
        raise MoveRejected("目标货位已被其他批次占用", status_code=409)
    if quantity == current_quantity:
        return FULL
    return PARTIAL


@dataclass
class MoveOutcome:
    kind: str
    source: StockBatch
    created: Optional[StockBatch] = None


async def move_batch(db: AsyncSession, *, stock_batch_id: int, new_position_id: int, quantity: int,
                     actor_id: Optional[int], organization_id: int, notes: Optional[str] = None) -> MoveOutcome:
    batch = await db.get(StockBatch, stock_batch_id)
    if not batch or batch.organization_id != organization_id:
        raise MoveNotFound("批次不存在")

    position = await db.get(StoragePosition, new_position_id)
    unit = await db.get(StorageUnit, position.storage_unit_id) if position else None
    location = await db.get(InventoryLocation, unit.location_id) if unit else None
    if not location or location.organization_id != organization_id:
        raise MoveNotFound("目标货位不存在")

    target_occupied = bool(position.is_occupied)
    if not target_occupied:
        target_occupied = await occupant(db, position.id, exclude_batch_id=batch.id) is not None

    kind = validate_move(batch.current_quantity, quantity, batch.position_id, position.id, target_occupied)
    if kind == NOOP:
        logger.info(f"原地移库，忽略: 批次 {batch.batch_number} 货位 {position.identifier}")
        return MoveOutcome(kind=kind, source=batch)

    # 条件更新占位，并发移入同一货位只有一个成功
    if not await claim_position(db, position):
        raise MoveRejected("目标货位已被其他批次占用", status_code=409)

    from_location_id = batch.location_id
    from_position_id = batch.position_id
    created = None

    # 容量计数：先从原位置扣除，再加到目标位置
    await shift_capacity(db, from_location_id, from_position_id, -quantity)
    await shift_capacity(db, location.id, position.id, quantity)

    if kind == FULL:
        if from_position_id:
            old_position = await db.get(StoragePosition, from_position_id)
            if old_position:
                old_position.is_occupied = False
        batch.position_id = position.id
        batch.location_id = location.id
        moved = batch
    else:
        batch.current_quantity -= quantity
        batch.update_status()
        created = StockBatch(
            organization_id=organization_id,
            batch_number=await split_batch_number(db, batch),
            product_id=batch.product_id,
            variant_id=batch.variant_id,
            location_id=location.id,
            position_id=position.id,
            supplier_id=batch.supplier_id,
            initial_quantity=quantity,
            current_quantity=quantity,
            purchase_price=batch.purchase_price,
            expiry_date=batch.expiry_date,
            received_date=batch.received_date,
            status="active",
            notes=f"由批次 {batch.batch_number} 移库拆分",
            created_by=actor_id,
        )
        db.add(created)
        await db.flush()
        moved = created

    db.add(StockMovement(
        organization_id=organization_id,
        batch_id=moved.id,
        product_id=batch.product_id,
        movement_type="MOVE",
        quantity=quantity,
        from_location_id=from_location_id,
        from_position_id=from_position_id,
        to_location_id=location.id,
        to_position_id=position.id,
        reference=batch.batch_number,
        notes=notes,
        member_id=actor_id,
    ))

    await create_audit_log(
        db,
        organization_id=organization_id,
        member_id=actor_id,
        action="move",
        resource_type="batch",
        resource_id=batch.id,
        resource_name=batch.batch_number,
        description=f"移库 {quantity} 件到货位 {position.identifier}" + ("（拆分新批次）" if created else ""),
        old_value={"location_id": from_location_id, "position_id": from_position_id},
        new_value={
            "location_id": location.id,
            "position_id": position.id,
            "quantity": quantity,
            "created_batch": created.batch_number if created else None,
        },
    )

    logger.info(f"移库: 批次 {batch.batch_number} x{quantity} -> {location.code}/{position.identifier} ({kind})")
    return MoveOutcome(kind=kind, source=batch, created=created)

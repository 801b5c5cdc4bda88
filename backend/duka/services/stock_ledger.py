"""
库存容量计数维护

capacity_used 按批次数量计（负库存记为 0），
存放在 地点 / 库区 / 存储单元 三级，随批次变动在同一事务内更新。
对账时按批次实际存放位置重新计算。
"""

import logging
from collections import defaultdict
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from duka.models.stock_batch import StockBatch
from duka.models.warehouse import InventoryLocation, StorageZone, StorageUnit, StoragePosition
from duka.schemas.warehouse import ReconcileResult

logger = logging.getLogger(__name__)


def placed(quantity: Optional[int]) -> int:
    """计入容量的数量"""
    return max(quantity or 0, 0)


async def _placement_nodes(db: AsyncSession, location_id: int, position_id: Optional[int]) -> list:
    nodes = []
    location = await db.get(InventoryLocation, location_id)
    if location:
        nodes.append(location)
    if position_id:
        position = await db.get(StoragePosition, position_id)
        unit = await db.get(StorageUnit, position.storage_unit_id) if position else None
        if unit:
            nodes.append(unit)
            if unit.zone_id:
                zone = await db.get(StorageZone, unit.zone_id)
                if zone:
                    nodes.append(zone)
    return nodes


async def shift_capacity(db: AsyncSession, location_id: int, position_id: Optional[int], delta: int):
    """在某个存放位置上增减已用容量"""
    if not delta:
        return
    for node in await _placement_nodes(db, location_id, position_id):
        node.capacity_used = (node.capacity_used or Decimal("0")) + Decimal(delta)


async def apply_quantity_change(db: AsyncSession, batch: StockBatch, before: int, after: int):
    """
    批次数量变化后更新容量计数和货位占用

    数量降到 0 及以下时释放货位；从 0 恢复时重新占用（货位已被其他批次占用则改为不指定货位）
    """
    if batch.position_id and before <= 0 < after:
        other = await occupant(db, batch.position_id, exclude_batch_id=batch.id)
        if other is not None:
            # 原货位已放了别的批次，只记到地点
            batch.position_id = None

    await shift_capacity(db, batch.location_id, batch.position_id, placed(after) - placed(before))

    if batch.position_id:
        position = await db.get(StoragePosition, batch.position_id)
        if position is not None:
            position.is_occupied = after > 0


async def claim_position(db: AsyncSession, position: StoragePosition) -> bool:
    """
    占用货位：条件更新 is_occupied False -> True，一条语句完成检查和写入

    返回 False 表示货位已被其他事务占用
    """
    await db.flush()
    result = await db.execute(
        update(StoragePosition)
        .where(StoragePosition.id == position.id, StoragePosition.is_occupied == False)  # noqa: E712
        .values(is_occupied=True)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return False
    set_committed_value(position, "is_occupied", True)
    return True


async def occupant(db: AsyncSession, position_id: int, exclude_batch_id: Optional[int] = None) -> Optional[StockBatch]:
    """当前存放在货位上的批次"""
    query = select(StockBatch).where(
        StockBatch.position_id == position_id,
        StockBatch.current_quantity > 0,
    )
    if exclude_batch_id is not None:
        query = query.where(StockBatch.id != exclude_batch_id)
    result = await db.execute(query.limit(1))
    return result.scalar_one_or_none()


async def reconcile_location(db: AsyncSession, location: InventoryLocation) -> ReconcileResult:
    """按批次存放位置重新计算一个地点的容量计数和货位占用"""
    before = location.capacity_used or Decimal("0")

    units = (await db.execute(
        select(StorageUnit).where(StorageUnit.location_id == location.id)
    )).scalars().all()
    zones = (await db.execute(
        select(StorageZone).where(StorageZone.location_id == location.id)
    )).scalars().all()
    positions = (await db.execute(
        select(StoragePosition).join(StorageUnit).where(StorageUnit.location_id == location.id)
    )).scalars().all()
    batches = (await db.execute(
        select(StockBatch).where(
            StockBatch.location_id == location.id,
            StockBatch.current_quantity > 0,
        )
    )).scalars().all()

    unit_of_position = {p.id: p.storage_unit_id for p in positions}
    unit_used = defaultdict(int)
    occupied = set()
    location_used = 0
    for batch in batches:
        location_used += batch.current_quantity
        unit_id = unit_of_position.get(batch.position_id)
        if unit_id is not None:
            unit_used[unit_id] += batch.current_quantity
            occupied.add(batch.position_id)

    zone_used = defaultdict(int)
    units_changed = 0
    for unit in units:
        value = Decimal(unit_used.get(unit.id, 0))
        if unit.zone_id:
            zone_used[unit.zone_id] += unit_used.get(unit.id, 0)
        if (unit.capacity_used or Decimal("0")) != value:
            unit.capacity_used = value
            units_changed += 1

    zones_changed = 0
    for zone in zones:
        value = Decimal(zone_used.get(zone.id, 0))
        if (zone.capacity_used or Decimal("0")) != value:
            zone.capacity_used = value
            zones_changed += 1

    positions_changed = 0
    for position in positions:
        flag = position.id in occupied
        if position.is_occupied != flag:
            position.is_occupied = flag
            positions_changed += 1

    location.capacity_used = Decimal(location_used)
    if location.capacity_used != before or units_changed or zones_changed or positions_changed:
        logger.info(
            f"容量对账 {location.code}: {before} -> {location.capacity_used}, "
            f"单元 {units_changed} 个, 库区 {zones_changed} 个, 货位 {positions_changed} 个已更正"
        )

    return ReconcileResult(
        location_id=location.id,
        before=before,
        after=location.capacity_used,
        units_changed=units_changed,
        zones_changed=zones_changed,
        positions_changed=positions_changed,
    )


async def reconcile_all(db: AsyncSession) -> List[ReconcileResult]:
    """对账全部启用容量跟踪的地点（定时任务使用）"""
    locations = (await db.execute(
        select(InventoryLocation).where(
            InventoryLocation.is_active == True,
            InventoryLocation.capacity_tracking == True,
        )
    )).scalars().all()
    return [await reconcile_location(db, location) for location in locations]

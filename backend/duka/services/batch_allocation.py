"""
销售出货的批次分配

按组织库存策略排序批次：
- FIFO 先入库先出
- LIFO 后入库先出
- FEFO 先到期先出（无到期日的排在最后，再按入库时间）
允许负库存时，不足部分记到最近入库的批次上。
"""

from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from duka.models.stock_batch import StockBatch


class InsufficientStock(Exception):
    def __init__(self, product_name: str, needed: int, available: int):
        self.product_name = product_name
        self.needed = needed
        self.available = available
        super().__init__(f"{product_name} 库存不足：需要 {needed}，可用 {available}")


def _received(batch) -> datetime:
    return batch.received_date or datetime.min


def order_batches(batches: Sequence, policy: str) -> list:
    if policy == "LIFO":
        return sorted(batches, key=lambda b: (_received(b), b.id), reverse=True)
    if policy == "FEFO":
        return sorted(batches, key=lambda b: (
            b.expiry_date is None,
            b.expiry_date or datetime.max,
            _received(b),
            b.id,
        ))
    return sorted(batches, key=lambda b: (_received(b), b.id))


def plan_allocation(batches: Sequence, quantity: int, policy: str, *, product_name: str = "商品",
                    allow_negative: bool = False, fallback=None) -> List[Tuple[object, int]]:
    """
    计算出货计划：[(批次, 数量), ...]

    batches 只应包含有库存的批次；fallback 为允许负库存时承接不足部分的批次
    """
    remaining = quantity
    plan = []
    for batch in order_batches([b for b in batches if b.current_quantity > 0], policy):
        if remaining <= 0:
            break
        take = min(batch.current_quantity, remaining)
        plan.append((batch, take))
        remaining -= take

    if remaining > 0:
        if not allow_negative or fallback is None:
            raise InsufficientStock(product_name, quantity, quantity - remaining)
        for index, (batch, take) in enumerate(plan):
            if batch is fallback:
                plan[index] = (batch, take + remaining)
                break
        else:
            plan.append((fallback, remaining))
    return plan


async def allocate(db: AsyncSession, *, organization, product, variant_id: Optional[int], quantity: int,
                   location_id: Optional[int] = None) -> List[Tuple[StockBatch, int]]:
    """查询可用批次并按组织策略分配"""
    conditions = [
        StockBatch.organization_id == organization.id,
        StockBatch.product_id == product.id,
        StockBatch.variant_id == variant_id if variant_id else StockBatch.variant_id.is_(None),
    ]
    if location_id:
        conditions.append(StockBatch.location_id == location_id)

    result = await db.execute(select(StockBatch).where(*conditions, StockBatch.current_quantity > 0))
    batches = result.scalars().all()

    fallback = None
    if organization.allow_negative_stock:
        result = await db.execute(
            select(StockBatch).where(*conditions)
            .order_by(StockBatch.received_date.desc(), StockBatch.id.desc()).limit(1)
        )
        fallback = result.scalar_one_or_none()

    return plan_allocation(
        batches, quantity, organization.inventory_policy or "FIFO",
        product_name=product.name,
        allow_negative=bool(organization.allow_negative_stock),
        fallback=fallback,
    )

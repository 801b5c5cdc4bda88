"""
库存水位报表

状态判定（按顺序）：
- out_of_stock：总量 <= 0
- low_stock：某个地点 0 < 数量 <= 最低水位
- overstock：设置了最高水位且每个地点数量 >= 最高水位
- normal：其他
最低水位 = 商品补货点，未设置时取组织低库存阈值；最高水位 = 补货量 × 2
"""

from collections import defaultdict
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from duka.models.product import Product
from duka.models.stock_batch import StockBatch
from duka.models.warehouse import InventoryLocation
from duka.schemas.stock_batch import LocationLevel, StockLevelItem

STATUSES = ("out_of_stock", "low_stock", "overstock", "normal")
SORT_FIELDS = ("name", "sku", "total_quantity", "status")


def classify(total: int, quantities: Sequence[int], min_level: int, max_level: Optional[int]) -> str:
    if total <= 0:
        return "out_of_stock"
    if any(0 < q <= min_level for q in quantities):
        return "low_stock"
    if max_level and quantities and all(q >= max_level for q in quantities):
        return "overstock"
    return "normal"


def levels_for(product, threshold: int) -> Tuple[int, Optional[int]]:
    min_level = product.reorder_point if product.reorder_point is not None else threshold
    max_level = product.reorder_quantity * 2 if product.reorder_quantity else None
    return min_level, max_level


async def query_stock_levels(
    db: AsyncSession,
    organization,
    *,
    warehouse_id: Optional[int] = None,
    category_id: Optional[int] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: str = "name",
    sort_order: str = "asc",
    page: int = 1,
    limit: int = 50) -> Tuple[List[StockLevelItem], int]:
    """返回 (当前页数据, 过滤后总数)"""
    query = select(Product).options(selectinload(Product.category)).where(
        Product.organization_id == organization.id,
        Product.is_active == True,
    )
    if category_id:
        query = query.where(Product.category_id == category_id)
    if search:
        like = f"%{search}%"
        query = query.where(or_(Product.name.ilike(like), Product.sku.ilike(like), Product.description.ilike(like)))
    products = (await db.execute(query)).scalars().all()

    location_query = select(InventoryLocation).where(
        InventoryLocation.organization_id == organization.id,
        InventoryLocation.is_active == True,
    )
    if warehouse_id:
        location_query = location_query.where(InventoryLocation.id == warehouse_id)
    locations = (await db.execute(location_query.order_by(InventoryLocation.id))).scalars().all()

    # 按 (商品, 地点) 汇总批次数量
    sums = defaultdict(int)
    if products and locations:
        rows = await db.execute(
            select(StockBatch.product_id, StockBatch.location_id, func.sum(StockBatch.current_quantity))
            .where(
                StockBatch.organization_id == organization.id,
                StockBatch.product_id.in_([p.id for p in products]),
                StockBatch.location_id.in_([loc.id for loc in locations]),
            )
            .group_by(StockBatch.product_id, StockBatch.location_id)
        )
        for product_id, location_id, quantity in rows.all():
            sums[(product_id, location_id)] = int(quantity or 0)

    threshold = organization.low_stock_threshold or 0
    items = []
    for product in products:
        per_location = [
            LocationLevel(location_id=loc.id, location_name=loc.name, quantity=sums[(product.id, loc.id)])
            for loc in locations
        ]
        total = sum(level.quantity for level in per_location)
        min_level, max_level = levels_for(product, threshold)
        items.append(StockLevelItem(
            product_id=product.id,
            product_name=product.name,
            sku=product.sku,
            category_id=product.category_id,
            category_name=product.category.name if product.category else "",
            total_quantity=total,
            min_level=min_level,
            max_level=max_level,
            status=classify(total, [level.quantity for level in per_location], min_level, max_level),
            locations=per_location,
        ))

    if status and status != "all":
        items = [item for item in items if item.status == status]

    sort_key = {
        "sku": lambda i: i.sku.lower(),
        "total_quantity": lambda i: i.total_quantity,
        "status": lambda i: STATUSES.index(i.status),
    }.get(sort_by, lambda i: i.product_name.lower())
    items.sort(key=sort_key, reverse=(sort_order == "desc"))

    total_count = len(items)
    start = (page - 1) * limit
    return items[start:start + limit], total_count

"""单据编号生成：前缀 + 日期 + 序号，如 BT20250604-001

序号取自 number_sequences 表，一条 upsert 语句完成“取号 + 加一”，并发收银不会拿到同一个号；
单据表上另有 (organization_id, 编号) 唯一约束兜底。
"""

from datetime import datetime

from sqlalchemy import select, func
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from duka.models.number_sequence import NumberSequence
from duka.models.stock_batch import StockBatch
from duka.models.sale import Sale
from duka.models.sale_return import SaleReturn


async def next_sequence_value(db: AsyncSession, organization_id: int, prefix: str, seed: int = 0) -> int:
    """
    取下一个序号

    seed 为该前缀已有单据数，只在第一次取号建行时使用（兼容流水号表之前生成的单据）
    """
    stmt = insert(NumberSequence).values(
        organization_id=organization_id,
        prefix=prefix,
        last_value=seed + 1,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[NumberSequence.organization_id, NumberSequence.prefix],
        set_={"last_value": NumberSequence.last_value + 1},
    ).returning(NumberSequence.last_value)
    result = await db.execute(stmt)
    return result.scalar_one()


async def _next_number(db: AsyncSession, column, organization_column, organization_id: int, code: str) -> str:
    today = datetime.utcnow().strftime("%Y%m%d")
    prefix = f"{code}{today}"

    # 移库拆出的批次（-M 后缀）不占用序号
    result = await db.execute(
        select(func.count()).where(
            organization_column == organization_id,
            column.like(f"{prefix}-%"),
            ~column.like("%-M%"),
        )
    )
    value = await next_sequence_value(db, organization_id, prefix, seed=result.scalar() or 0)
    return f"{prefix}-{value:03d}"


async def generate_code(db: AsyncSession, model, prefix: str, organization_id: int) -> str:
    """主数据编码：前缀 + 4位序号，如 SP0001（组织内递增）"""
    result = await db.execute(
        select(func.max(model.code)).where(
            model.organization_id == organization_id,
            model.code.like(f"{prefix}%"),
        )
    )
    max_code = result.scalar()

    if max_code:
        try:
            num = int(max_code[len(prefix):]) + 1
        except ValueError:
            num = 1
    else:
        num = 1

    return f"{prefix}{num:04d}"


async def generate_batch_number(db: AsyncSession, organization_id: int) -> str:
    """批次号：BT + 日期 + 序号"""
    return await _next_number(db, StockBatch.batch_number, StockBatch.organization_id, organization_id, "BT")


async def generate_sale_number(db: AsyncSession, organization_id: int) -> str:
    """销售单号：SL + 日期 + 序号"""
    return await _next_number(db, Sale.sale_number, Sale.organization_id, organization_id, "SL")


async def generate_return_number(db: AsyncSession, organization_id: int) -> str:
    """退货单号：RT + 日期 + 序号"""
    return await _next_number(db, SaleReturn.return_number, SaleReturn.organization_id, organization_id, "RT")


async def split_batch_number(db: AsyncSession, source: StockBatch) -> str:
    """部分移库产生的新批次号：原批次号 + -M<n>"""
    prefix = f"{source.batch_number}-M"
    result = await db.execute(
        select(func.count()).where(
            StockBatch.organization_id == source.organization_id,
            StockBatch.batch_number.like(f"{prefix}%"),
        )
    )
    value = await next_sequence_value(db, source.organization_id, prefix, seed=result.scalar() or 0)
    return f"{prefix}{value}"

"""往来方管理API - 供应商/客户"""

from typing import Any, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from duka.core.deps import get_db, get_org_context, OrgContext
from duka.models.party import Party
from duka.models.stock_batch import StockBatch
from duka.models.sale import Sale
from duka.schemas.party import PartyCreate, PartyUpdate, PartyResponse, PartyListResponse
from duka.services.numbering import generate_code

router = APIRouter()


def party_prefix(party_type: str) -> str:
    if "supplier" in party_type:
        return "SP"
    if "customer" in party_type:
        return "CU"
    return "PT"


async def get_party_or_404(db: AsyncSession, party_id: int, organization_id: int) -> Party:
    party = await db.get(Party, party_id)
    if not party or party.organization_id != organization_id:
        raise HTTPException(status_code=404, detail="往来方不存在")
    return party


@router.get("/", response_model=PartyListResponse)
async def list_parties(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    party_type: Optional[str] = Query(None, description="类型筛选：supplier/customer"),
    search: Optional[str] = Query(None, description="搜索"),
    is_active: Optional[bool] = Query(None, description="是否启用"),
) -> Any:
    """获取往来方列表"""
    conditions = [Party.organization_id == ctx.organization_id]
    if party_type:
        conditions.append(Party.party_type.contains(party_type))
    if is_active is not None:
        conditions.append(Party.is_active == is_active)
    if search:
        conditions.append(
            Party.name.contains(search) |
            Party.code.contains(search) |
            Party.contact_name.contains(search) |
            Party.phone.contains(search)
        )
    query = select(Party).where(and_(*conditions))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar()

    query = query.order_by(Party.created_at.desc()).offset((page - 1) * limit).limit(limit)
    parties = (await db.execute(query)).scalars().all()
    return PartyListResponse(
        data=[PartyResponse.model_validate(p) for p in parties],
        total=total, page=page, limit=limit,
    )


@router.post("/", response_model=PartyResponse)
async def create_party(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    party_in: PartyCreate,
) -> Any:
    """创建往来方"""
    data = party_in.model_dump()
    code = data.pop("code") or await generate_code(db, Party, party_prefix(party_in.party_type), ctx.organization_id)

    existing = await db.execute(select(Party).where(
        Party.organization_id == ctx.organization_id, Party.code == code
    ))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=400, detail=f"编码 {code} 已存在")

    party = Party(**data, code=code, organization_id=ctx.organization_id, created_by=ctx.member_id)
    db.add(party)
    await db.commit()
    await db.refresh(party)
    return PartyResponse.model_validate(party)


@router.get("/{party_id}", response_model=PartyResponse)
async def get_party(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    party_id: int,
) -> Any:
    """获取往来方详情"""
    return PartyResponse.model_validate(await get_party_or_404(db, party_id, ctx.organization_id))


@router.put("/{party_id}", response_model=PartyResponse)
async def update_party(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    party_id: int,
    party_in: PartyUpdate,
) -> Any:
    """更新往来方"""
    party = await get_party_or_404(db, party_id, ctx.organization_id)
    for field, value in party_in.model_dump(exclude_unset=True).items():
        setattr(party, field, value)
    await db.commit()
    await db.refresh(party)
    return PartyResponse.model_validate(party)


@router.delete("/{party_id}")
async def delete_party(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    party_id: int,
) -> Any:
    """删除往来方（有批次或销售记录时只能停用）"""
    party = await get_party_or_404(db, party_id, ctx.organization_id)

    batch_count = (await db.execute(
        select(func.count(StockBatch.id)).where(StockBatch.supplier_id == party_id)
    )).scalar()
    sale_count = (await db.execute(
        select(func.count(Sale.id)).where(Sale.customer_id == party_id)
    )).scalar()
    if batch_count or sale_count:
        raise HTTPException(status_code=400, detail="该往来方已有业务记录，只能停用")

    await db.delete(party)
    await db.commit()
    return {"message": "删除成功"}

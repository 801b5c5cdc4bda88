"""成员管理API"""

from typing import Any, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from duka.core.deps import get_db, get_org_context, OrgContext
from duka.models.organization import Member
from duka.schemas.organization import MemberCreate, MemberUpdate, MemberResponse, MemberListResponse

router = APIRouter()


async def get_member_or_404(db: AsyncSession, member_id: int, organization_id: int) -> Member:
    member = await db.get(Member, member_id)
    if not member or member.organization_id != organization_id:
        raise HTTPException(status_code=404, detail="成员不存在")
    return member


@router.get("/", response_model=MemberListResponse)
async def list_members(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    role: Optional[str] = Query(None, description="角色筛选"),
    search: Optional[str] = Query(None, description="搜索"),
) -> Any:
    """获取成员列表"""
    conditions = [Member.organization_id == ctx.organization_id]
    if role:
        conditions.append(Member.role == role)
    if search:
        conditions.append(Member.name.contains(search) | Member.email.contains(search))
    query = select(Member).where(and_(*conditions))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar()

    query = query.order_by(Member.created_at.desc()).offset((page - 1) * limit).limit(limit)
    members = (await db.execute(query)).scalars().all()
    return MemberListResponse(
        data=[MemberResponse.model_validate(m) for m in members],
        total=total, page=page, limit=limit,
    )


@router.post("/", response_model=MemberResponse)
async def create_member(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    member_in: MemberCreate,
) -> Any:
    """添加成员"""
    if member_in.email:
        existing = await db.execute(select(Member).where(
            Member.organization_id == ctx.organization_id,
            Member.email == member_in.email,
        ))
        if existing.scalar_one_or_none():
            raise HTTPException(status_code=400, detail="该邮箱已是组织成员")

    member = Member(**member_in.model_dump(), organization_id=ctx.organization_id)
    db.add(member)
    await db.commit()
    await db.refresh(member)
    return MemberResponse.model_validate(member)


@router.get("/{member_id}", response_model=MemberResponse)
async def get_member(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    member_id: int,
) -> Any:
    """获取成员详情"""
    return MemberResponse.model_validate(await get_member_or_404(db, member_id, ctx.organization_id))


@router.put("/{member_id}", response_model=MemberResponse)
async def update_member(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    member_id: int,
    member_in: MemberUpdate,
) -> Any:
    """更新成员"""
    member = await get_member_or_404(db, member_id, ctx.organization_id)
    for field, value in member_in.model_dump(exclude_unset=True).items():
        setattr(member, field, value)
    await db.commit()
    await db.refresh(member)
    return MemberResponse.model_validate(member)

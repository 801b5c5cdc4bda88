"""部门管理API"""

from typing import Any, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from duka.core.deps import get_db, get_org_context, OrgContext
from duka.models.department import Department
from duka.models.organization import Member
from duka.schemas.party import DepartmentCreate, DepartmentUpdate, DepartmentResponse, DepartmentListResponse
from duka.services.numbering import generate_code

router = APIRouter()


def build_department_response(dept: Department) -> DepartmentResponse:
    resp = DepartmentResponse.model_validate(dept)
    resp.head_name = dept.head.name if dept.head else ""
    return resp


async def load_department(db: AsyncSession, department_id: int, organization_id: int) -> Department:
    result = await db.execute(
        select(Department).options(selectinload(Department.head))
        .where(Department.id == department_id, Department.organization_id == organization_id)
        .execution_options(populate_existing=True)
    )
    dept = result.scalar_one_or_none()
    if not dept:
        raise HTTPException(status_code=404, detail="部门不存在")
    return dept


async def check_head(db: AsyncSession, member_id: Optional[int], organization_id: int):
    if member_id is None:
        return
    member = await db.get(Member, member_id)
    if not member or member.organization_id != organization_id:
        raise HTTPException(status_code=400, detail="负责人不是本组织成员")


@router.get("/", response_model=DepartmentListResponse)
async def list_departments(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    search: Optional[str] = Query(None),
) -> Any:
    """获取部门列表"""
    conditions = [Department.organization_id == ctx.organization_id]
    if search:
        conditions.append(Department.name.contains(search) | Department.code.contains(search))
    query = select(Department).where(and_(*conditions))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar()

    query = (query.options(selectinload(Department.head))
             .order_by(Department.name).offset((page - 1) * limit).limit(limit))
    depts = (await db.execute(query)).scalars().all()
    return DepartmentListResponse(
        data=[build_department_response(d) for d in depts],
        total=total, page=page, limit=limit,
    )


@router.post("/", response_model=DepartmentResponse)
async def create_department(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    dept_in: DepartmentCreate,
) -> Any:
    """创建部门"""
    await check_head(db, dept_in.head_member_id, ctx.organization_id)
    dept = Department(
        **dept_in.model_dump(),
        code=await generate_code(db, Department, "DP", ctx.organization_id),
        organization_id=ctx.organization_id,
        created_by=ctx.member_id,
    )
    db.add(dept)
    await db.commit()
    return build_department_response(await load_department(db, dept.id, ctx.organization_id))


@router.get("/{department_id}", response_model=DepartmentResponse)
async def get_department(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    department_id: int,
) -> Any:
    """获取部门详情"""
    return build_department_response(await load_department(db, department_id, ctx.organization_id))


@router.put("/{department_id}", response_model=DepartmentResponse)
async def update_department(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    department_id: int,
    dept_in: DepartmentUpdate,
) -> Any:
    """更新部门"""
    dept = await load_department(db, department_id, ctx.organization_id)
    update_data = dept_in.model_dump(exclude_unset=True)
    if "head_member_id" in update_data:
        await check_head(db, update_data["head_member_id"], ctx.organization_id)
    for field, value in update_data.items():
        setattr(dept, field, value)
    await db.commit()
    return build_department_response(await load_department(db, department_id, ctx.organization_id))


@router.delete("/{department_id}")
async def delete_department(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    department_id: int,
) -> Any:
    """删除部门"""
    dept = await load_department(db, department_id, ctx.organization_id)
    await db.delete(dept)
    await db.commit()
    return {"message": "删除成功"}

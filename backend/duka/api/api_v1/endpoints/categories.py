"""商品分类API"""

from typing import Any, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from duka.core.deps import get_db, get_org_context, OrgContext
from duka.models.product import Category, Product
from duka.schemas.product import CategoryCreate, CategoryUpdate, CategoryResponse

router = APIRouter()


async def get_category_or_404(db: AsyncSession, category_id: int, organization_id: int) -> Category:
    category = await db.get(Category, category_id)
    if not category or category.organization_id != organization_id:
        raise HTTPException(status_code=404, detail="分类不存在")
    return category


async def check_parent(db: AsyncSession, category: Optional[Category], parent_id: Optional[int], organization_id: int):
    if parent_id is None:
        return
    parent = await get_category_or_404(db, parent_id, organization_id)
    # 不能把分类挂到自己或自己的子孙下面
    node = parent
    while node is not None and category is not None:
        if node.id == category.id:
            raise HTTPException(status_code=400, detail="不能将分类移动到其子分类下")
        node = await db.get(Category, node.parent_id) if node.parent_id else None


@router.get("/", response_model=List[CategoryResponse])
async def list_categories(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    is_active: Optional[bool] = Query(None),
) -> Any:
    """获取分类列表（含商品数量）"""
    query = select(Category).where(Category.organization_id == ctx.organization_id)
    if is_active is not None:
        query = query.where(Category.is_active == is_active)
    categories = (await db.execute(query.order_by(Category.name))).scalars().all()

    counts = dict((await db.execute(
        select(Product.category_id, func.count(Product.id))
        .where(Product.organization_id == ctx.organization_id)
        .group_by(Product.category_id)
    )).all())

    data = []
    for c in categories:
        resp = CategoryResponse.model_validate(c)
        resp.product_count = counts.get(c.id, 0)
        data.append(resp)
    return data


@router.post("/", response_model=CategoryResponse)
async def create_category(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    category_in: CategoryCreate,
) -> Any:
    """创建分类"""
    await check_parent(db, None, category_in.parent_id, ctx.organization_id)
    category = Category(**category_in.model_dump(), organization_id=ctx.organization_id)
    db.add(category)
    await db.commit()
    await db.refresh(category)
    return CategoryResponse.model_validate(category)


@router.put("/{category_id}", response_model=CategoryResponse)
async def update_category(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    category_id: int,
    category_in: CategoryUpdate,
) -> Any:
    """更新分类"""
    category = await get_category_or_404(db, category_id, ctx.organization_id)
    update_data = category_in.model_dump(exclude_unset=True)
    if "parent_id" in update_data:
        await check_parent(db, category, update_data["parent_id"], ctx.organization_id)
    for field, value in update_data.items():
        setattr(category, field, value)
    await db.commit()
    await db.refresh(category)
    return CategoryResponse.model_validate(category)


@router.delete("/{category_id}")
async def delete_category(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    category_id: int,
) -> Any:
    """删除分类（有商品或子分类时不允许）"""
    category = await get_category_or_404(db, category_id, ctx.organization_id)
    product_count = (await db.execute(
        select(func.count(Product.id)).where(Product.category_id == category_id)
    )).scalar()
    child_count = (await db.execute(
        select(func.count(Category.id)).where(Category.parent_id == category_id)
    )).scalar()
    if product_count or child_count:
        raise HTTPException(status_code=400, detail="分类下还有商品或子分类，不能删除")
    await db.delete(category)
    await db.commit()
    return {"message": "删除成功"}

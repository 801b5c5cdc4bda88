"""商品管理API"""

from typing import Any, Optional
from decimal import Decimal
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from duka.core.deps import get_db, get_org_context, OrgContext
from duka.models.product import Category, Product, ProductVariant
from duka.models.stock_batch import StockBatch
from duka.schemas.product import (
    ProductCreate, ProductUpdate, ProductResponse, ProductListResponse,
    VariantCreate, VariantResponse,
)

router = APIRouter()


def build_variant_response(product: Product, v: ProductVariant) -> VariantResponse:
    return VariantResponse(
        id=v.id,
        product_id=v.product_id,
        name=v.name,
        sku=v.sku,
        price_modifier=v.price_modifier or Decimal("0"),
        buying_price=v.buying_price,
        is_active=v.is_active,
        unit_price=(product.base_price or Decimal("0")) + (v.price_modifier or Decimal("0")),
    )


def build_product_response(product: Product) -> ProductResponse:
    """构建商品响应"""
    return ProductResponse(
        id=product.id,
        name=product.name,
        sku=product.sku,
        category_id=product.category_id,
        category_name=product.category.name if product.category else "",
        description=product.description,
        image_urls=product.image_list,
        base_price=product.base_price,
        buying_price=product.buying_price or Decimal("0"),
        reorder_point=product.reorder_point,
        reorder_quantity=product.reorder_quantity,
        is_active=product.is_active,
        variants=[build_variant_response(product, v) for v in product.variants],
        created_at=product.created_at,
        updated_at=product.updated_at,
    )


async def load_product(db: AsyncSession, product_id: int, organization_id: int) -> Product:
    result = await db.execute(
        select(Product)
        .options(selectinload(Product.category), selectinload(Product.variants))
        .where(Product.id == product_id, Product.organization_id == organization_id)
        .execution_options(populate_existing=True)
    )
    product = result.scalar_one_or_none()
    if not product:
        raise HTTPException(status_code=404, detail="商品不存在")
    return product


async def check_sku(db: AsyncSession, organization_id: int, sku: str, exclude_id: Optional[int] = None):
    query = select(Product.id).where(Product.organization_id == organization_id, Product.sku == sku)
    if exclude_id:
        query = query.where(Product.id != exclude_id)
    if (await db.execute(query)).first():
        raise HTTPException(status_code=400, detail=f"SKU {sku} 已存在")


async def check_category(db: AsyncSession, category_id: Optional[int], organization_id: int):
    if category_id is None:
        return
    category = await db.get(Category, category_id)
    if not category or category.organization_id != organization_id:
        raise HTTPException(status_code=400, detail="分类不存在")


@router.get("/", response_model=ProductListResponse)
async def list_products(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None, description="搜索品名/SKU"),
    is_active: Optional[bool] = Query(None),
) -> Any:
    """获取商品列表"""
    conditions = [Product.organization_id == ctx.organization_id]
    if category_id:
        conditions.append(Product.category_id == category_id)
    if is_active is not None:
        conditions.append(Product.is_active == is_active)
    if search:
        conditions.append(Product.name.contains(search) | Product.sku.contains(search))
    query = select(Product).where(and_(*conditions))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar()

    query = (query.options(selectinload(Product.category), selectinload(Product.variants))
             .order_by(Product.name).offset((page - 1) * limit).limit(limit))
    products = (await db.execute(query)).scalars().all()
    return ProductListResponse(
        data=[build_product_response(p) for p in products],
        total=total, page=page, limit=limit,
    )


@router.post("/", response_model=ProductResponse)
async def create_product(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    product_in: ProductCreate,
) -> Any:
    """创建商品（可同时创建变体）"""
    await check_sku(db, ctx.organization_id, product_in.sku)
    await check_category(db, product_in.category_id, ctx.organization_id)

    data = product_in.model_dump(exclude={"variants", "image_urls"})
    product = Product(
        **data,
        image_urls=",".join(product_in.image_urls),
        organization_id=ctx.organization_id,
        variants=[ProductVariant(**v.model_dump()) for v in product_in.variants],
    )
    db.add(product)
    await db.commit()
    return build_product_response(await load_product(db, product.id, ctx.organization_id))


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    product_id: int,
) -> Any:
    """获取商品详情"""
    return build_product_response(await load_product(db, product_id, ctx.organization_id))


@router.put("/{product_id}", response_model=ProductResponse)
async def update_product(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    product_id: int,
    product_in: ProductUpdate,
) -> Any:
    """更新商品"""
    product = await load_product(db, product_id, ctx.organization_id)
    update_data = product_in.model_dump(exclude_unset=True)
    if "category_id" in update_data:
        await check_category(db, update_data["category_id"], ctx.organization_id)
    if "image_urls" in update_data:
        update_data["image_urls"] = ",".join(update_data["image_urls"] or [])
    for field, value in update_data.items():
        setattr(product, field, value)
    await db.commit()
    return build_product_response(await load_product(db, product_id, ctx.organization_id))


@router.delete("/{product_id}")
async def delete_product(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    product_id: int,
) -> Any:
    """删除商品（有库存批次时只能停用）"""
    product = await load_product(db, product_id, ctx.organization_id)
    batch_count = (await db.execute(
        select(func.count(StockBatch.id)).where(StockBatch.product_id == product_id)
    )).scalar()
    if batch_count:
        raise HTTPException(status_code=400, detail="商品已有库存批次，只能停用")
    await db.delete(product)
    await db.commit()
    return {"message": "删除成功"}


@router.post("/{product_id}/variants", response_model=VariantResponse)
async def add_variant(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    product_id: int,
    variant_in: VariantCreate,
) -> Any:
    """添加商品变体"""
    product = await load_product(db, product_id, ctx.organization_id)
    if any(v.sku == variant_in.sku for v in product.variants):
        raise HTTPException(status_code=400, detail=f"变体SKU {variant_in.sku} 已存在")
    variant = ProductVariant(**variant_in.model_dump(), product_id=product.id)
    db.add(variant)
    await db.commit()
    await db.refresh(variant)
    return build_variant_response(product, variant)


@router.delete("/{product_id}/variants/{variant_id}")
async def delete_variant(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    product_id: int,
    variant_id: int,
) -> Any:
    """删除商品变体（有库存批次时只能停用）"""
    product = await load_product(db, product_id, ctx.organization_id)
    variant = next((v for v in product.variants if v.id == variant_id), None)
    if not variant:
        raise HTTPException(status_code=404, detail="变体不存在")
    batch_count = (await db.execute(
        select(func.count(StockBatch.id)).where(StockBatch.variant_id == variant_id)
    )).scalar()
    if batch_count:
        variant.is_active = False
        await db.commit()
        return {"message": "变体已有库存批次，已停用"}
    await db.delete(variant)
    await db.commit()
    return {"message": "删除成功"}

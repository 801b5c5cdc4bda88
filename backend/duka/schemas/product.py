"""商品目录Schema"""
from typing import Optional, List
from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal


# ===== 分类 =====
class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="分类名称")
    parent_id: Optional[int] = Field(None, description="父分类ID")
    description: Optional[str] = Field(None, max_length=500)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    parent_id: Optional[int] = None
    description: Optional[str] = Field(None, max_length=500)
    is_active: Optional[bool] = None


class CategoryResponse(BaseModel):
    id: int
    name: str
    parent_id: Optional[int] = None
    description: Optional[str] = None
    is_active: bool
    product_count: int = 0

    class Config:
        from_attributes = True


# ===== 商品变体 =====
class VariantCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="变体名称")
    sku: str = Field(..., min_length=1, max_length=64, description="变体SKU")
    price_modifier: Decimal = Field(default=Decimal("0"), description="加价")
    buying_price: Optional[Decimal] = Field(None, ge=0, description="变体进货价")


class VariantResponse(VariantCreate):
    id: int
    product_id: int
    is_active: bool
    unit_price: Decimal = Decimal("0")

    class Config:
        from_attributes = True


# ===== 商品 =====
class ProductBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200, description="品名")
    sku: str = Field(..., min_length=1, max_length=64, description="SKU")
    category_id: Optional[int] = Field(None, description="分类ID")
    description: Optional[str] = None
    image_urls: List[str] = Field(default_factory=list, description="图片地址")
    base_price: Decimal = Field(..., ge=0, description="售价")
    buying_price: Decimal = Field(default=Decimal("0"), ge=0, description="进货价")
    reorder_point: Optional[int] = Field(None, ge=0, description="补货点")
    reorder_quantity: Optional[int] = Field(None, ge=0, description="补货量")


class ProductCreate(ProductBase):
    variants: List[VariantCreate] = Field(default_factory=list)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    category_id: Optional[int] = None
    description: Optional[str] = None
    image_urls: Optional[List[str]] = None
    base_price: Optional[Decimal] = Field(None, ge=0)
    buying_price: Optional[Decimal] = Field(None, ge=0)
    reorder_point: Optional[int] = Field(None, ge=0)
    reorder_quantity: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class ProductResponse(ProductBase):
    id: int
    is_active: bool
    category_name: str = ""
    variants: List[VariantResponse] = []
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ProductListResponse(BaseModel):
    data: List[ProductResponse]
    total: int
    page: int
    limit: int

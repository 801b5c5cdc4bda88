"""组织与成员Schema"""
from typing import Optional, List
from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal


# ===== 组织 =====
class OrganizationBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="组织名称")
    slug: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9-]+$", description="URL标识")


class OrganizationCreate(OrganizationBase):
    currency: str = Field(default="KES", max_length=10, description="结算币种")
    # 创建组织时同时创建店主成员
    owner_name: str = Field(..., min_length=1, max_length=100, description="店主姓名")
    owner_email: Optional[str] = Field(None, max_length=200, description="店主邮箱")


class OrganizationResponse(OrganizationBase):
    id: int
    currency: str
    inventory_policy: str
    is_active: bool
    created_at: datetime
    owner_member_id: Optional[int] = None

    class Config:
        from_attributes = True


# ===== 组织设置 =====
class OrganizationSettings(BaseModel):
    """组织设置（收银 + 库存）"""
    currency: str
    default_tax_rate: Decimal = Field(..., description="生效税率（未设置时为系统默认）")
    default_discount_rate: Decimal = Field(..., description="生效折扣率（未设置时为系统默认）")
    tax_rate_is_default: bool = False
    discount_rate_is_default: bool = False
    inventory_policy: str
    policy_display: str = ""
    low_stock_threshold: int
    allow_negative_stock: bool


class OrganizationSettingsUpdate(BaseModel):
    """更新组织设置；费率传 null 表示恢复系统默认"""
    currency: Optional[str] = Field(None, min_length=3, max_length=10)
    default_tax_rate: Optional[Decimal] = Field(None, ge=0, le=1, description="税率，如 0.16")
    default_discount_rate: Optional[Decimal] = Field(None, ge=0, le=1, description="折扣率，如 0.10")
    inventory_policy: Optional[str] = Field(None, pattern=r"^(FIFO|LIFO|FEFO)$")
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    allow_negative_stock: Optional[bool] = None


# ===== 成员 =====
class MemberBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="姓名")
    email: Optional[str] = Field(None, max_length=200, description="邮箱")
    role: str = Field(default="cashier", pattern=r"^(owner|manager|cashier|storekeeper)$", description="角色")


class MemberCreate(MemberBase):
    pass


class MemberUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[str] = Field(None, max_length=200)
    role: Optional[str] = Field(None, pattern=r"^(owner|manager|cashier|storekeeper)$")
    is_active: Optional[bool] = None


class MemberResponse(MemberBase):
    id: int
    organization_id: int
    is_active: bool
    role_display: str = ""
    created_at: datetime

    class Config:
        from_attributes = True


class MemberListResponse(BaseModel):
    data: List[MemberResponse]
    total: int
    page: int
    limit: int

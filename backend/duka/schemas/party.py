"""往来方与部门Schema"""
from typing import Optional, List
from pydantic import BaseModel, Field
from datetime import datetime


# ===== 往来方（供应商/客户）=====
class PartyBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="名称")
    party_type: str = Field(default="supplier", description="类型：supplier/customer，可逗号组合")
    contact_name: Optional[str] = Field(None, max_length=50, description="联系人")
    phone: Optional[str] = Field(None, max_length=20, description="电话")
    email: Optional[str] = Field(None, max_length=200, description="邮箱")
    address: Optional[str] = Field(None, max_length=200, description="地址")
    notes: Optional[str] = Field(None, description="备注")


class PartyCreate(PartyBase):
    code: Optional[str] = Field(None, max_length=50, description="编码（为空自动生成）")


class PartyUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    party_type: Optional[str] = None
    contact_name: Optional[str] = Field(None, max_length=50)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[str] = Field(None, max_length=200)
    address: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = None
    is_active: Optional[bool] = None


class PartyResponse(PartyBase):
    id: int
    code: str
    is_active: bool
    loyalty_points: int = 0
    type_display: str = ""
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PartyListResponse(BaseModel):
    data: List[PartyResponse]
    total: int
    page: int
    limit: int


# ===== 部门 =====
class DepartmentBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="部门名称")
    description: Optional[str] = Field(None, description="描述")
    head_member_id: Optional[int] = Field(None, description="负责人成员ID")


class DepartmentCreate(DepartmentBase):
    pass


class DepartmentUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    head_member_id: Optional[int] = None
    is_active: Optional[bool] = None


class DepartmentResponse(DepartmentBase):
    id: int
    code: str
    is_active: bool
    head_name: str = ""
    created_at: datetime

    class Config:
        from_attributes = True


class DepartmentListResponse(BaseModel):
    data: List[DepartmentResponse]
    total: int
    page: int
    limit: int

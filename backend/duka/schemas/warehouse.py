"""仓储层级与容量Schema"""
from typing import Optional, List
from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal


# ===== 仓库/地点 =====
class LocationBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="名称")
    location_type: str = Field(default="WAREHOUSE", pattern=r"^(WAREHOUSE|RETAIL_SHOP|KITCHEN|COLD_ROOM)$")
    description: Optional[str] = None
    address: Optional[str] = Field(None, max_length=200)
    capacity_tracking: bool = True
    total_capacity: Decimal = Field(default=Decimal("0"), ge=0, description="总容量")
    capacity_unit: str = Field(default="UNITS", max_length=20)
    is_default: bool = False


class LocationCreate(LocationBase):
    pass


class LocationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    location_type: Optional[str] = Field(None, pattern=r"^(WAREHOUSE|RETAIL_SHOP|KITCHEN|COLD_ROOM)$")
    description: Optional[str] = None
    address: Optional[str] = Field(None, max_length=200)
    capacity_tracking: Optional[bool] = None
    total_capacity: Optional[Decimal] = Field(None, ge=0)
    capacity_unit: Optional[str] = Field(None, max_length=20)
    is_default: Optional[bool] = None
    is_active: Optional[bool] = None


class LocationResponse(LocationBase):
    id: int
    code: str
    capacity_used: Decimal
    is_active: bool
    type_display: str = ""
    created_at: datetime

    class Config:
        from_attributes = True


class LocationListResponse(BaseModel):
    data: List[LocationResponse]
    total: int
    page: int
    limit: int


# ===== 库区 =====
class ZoneCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="库区名称")
    description: Optional[str] = None
    capacity: Decimal = Field(default=Decimal("0"), ge=0)
    capacity_unit: str = Field(default="UNITS", max_length=20)


class ZoneResponse(ZoneCreate):
    id: int
    location_id: int
    capacity_used: Decimal
    is_active: bool

    class Config:
        from_attributes = True


# ===== 存储单元 =====
class UnitCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="名称")
    zone_id: Optional[int] = Field(None, description="所属库区")
    unit_type: str = Field(default="SHELF", pattern=r"^(RACK|SHELF|BIN|PALLET|FREEZER|FLOOR)$")
    capacity: Decimal = Field(default=Decimal("0"), ge=0)
    capacity_unit: str = Field(default="UNITS", max_length=20)
    # 批量生成货位，如 ["A1-1", "A1-2"]
    positions: List[str] = Field(default_factory=list, description="货位编号")


class PositionResponse(BaseModel):
    id: int
    storage_unit_id: int
    identifier: str
    is_occupied: bool
    batch_id: Optional[int] = None
    batch_number: str = ""

    class Config:
        from_attributes = True


class UnitResponse(BaseModel):
    id: int
    location_id: int
    zone_id: Optional[int] = None
    name: str
    unit_type: str
    capacity: Decimal
    capacity_used: Decimal
    capacity_unit: str
    is_active: bool
    positions: List[PositionResponse] = []

    class Config:
        from_attributes = True


class PositionCreate(BaseModel):
    identifier: str = Field(..., min_length=1, max_length=50, description="货位编号")


# ===== 容量 =====
class CapacityNode(BaseModel):
    """单个节点（仓库/库区/存储单元）的容量使用率"""
    id: int
    name: str
    capacity: Decimal
    used: Decimal
    utilization: float = Field(..., ge=0, le=100, description="使用率（百分比）")
    status: str = Field(..., description="normal / warning / alert")
    misconfigured: bool = False
    over_capacity: bool = False


class CategoryUsage(BaseModel):
    category_id: Optional[int] = None
    category_name: str
    quantity: int
    share: float = Field(..., description="占仓库总量的百分比")


class CapacityReport(BaseModel):
    warehouse: CapacityNode
    zones: List[CapacityNode]
    units: List[CapacityNode]
    categories: List[CategoryUsage]


class ReconcileResult(BaseModel):
    location_id: int
    before: Decimal
    after: Decimal
    units_changed: int
    zones_changed: int
    positions_changed: int = 0

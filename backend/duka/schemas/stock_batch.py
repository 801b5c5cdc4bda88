"""库存批次Schema"""
from typing import Optional, List
from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal


# ===== 入库 =====
class StockBatchCreate(BaseModel):
    """入库：创建批次"""
    product_id: int = Field(..., description="商品ID")
    variant_id: Optional[int] = Field(None, description="变体ID")
    location_id: int = Field(..., description="存放地点ID")
    position_id: Optional[int] = Field(None, description="存放货位ID（必须空闲）")
    supplier_id: Optional[int] = Field(None, description="来源供应商ID")
    quantity: int = Field(..., gt=0, description="入库数量")
    purchase_price: Decimal = Field(..., ge=0, description="进货单价")
    expiry_date: Optional[datetime] = Field(None, description="到期日期")
    received_date: Optional[datetime] = Field(None, description="入库日期")
    notes: Optional[str] = Field(None, max_length=500, description="备注")


class StockBatchMove(BaseModel):
    """移库"""
    new_position_id: int = Field(..., description="目标货位ID")
    # 不在这里做 gt=0 校验，数量合法性由移库服务统一判定
    quantity: int = Field(..., description="移动数量")
    notes: Optional[str] = Field(None, max_length=200)


class StockBatchAdjust(BaseModel):
    """库存调整（报损/报溢/盘点）"""
    quantity_change: int = Field(..., description="调整数量（非零，负数为减少）")
    reason: str = Field(..., pattern=r"^(DAMAGED|EXPIRED|LOST|FOUND|COUNT_CORRECTION|INITIAL_STOCK|OTHER)$")
    notes: Optional[str] = Field(None, max_length=500)


class StockBatchResponse(BaseModel):
    id: int
    batch_number: str
    product_id: int
    variant_id: Optional[int] = None
    location_id: int
    position_id: Optional[int] = None
    supplier_id: Optional[int] = None

    initial_quantity: int
    current_quantity: int
    purchase_price: Decimal
    stock_value: Decimal = Decimal("0")

    expiry_date: Optional[datetime] = None
    received_date: Optional[datetime] = None

    status: str
    status_display: str = ""
    is_expired: bool = False

    # 关联信息
    product_name: str = ""
    product_sku: str = ""
    location_name: str = ""
    position_identifier: str = ""
    supplier_name: str = ""

    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StockBatchListResponse(BaseModel):
    data: List[StockBatchResponse]
    total: int
    page: int
    limit: int


class MoveResult(BaseModel):
    """移库结果"""
    source: StockBatchResponse
    # 部分移库时生成的新批次；整批移库或原地移库时为空
    created: Optional[StockBatchResponse] = None
    noop: bool = False


# ===== 流水 =====
class StockMovementResponse(BaseModel):
    id: int
    batch_id: int
    product_id: int
    movement_type: str
    type_display: str = ""
    quantity: int
    from_location_id: Optional[int] = None
    from_position_id: Optional[int] = None
    to_location_id: Optional[int] = None
    to_position_id: Optional[int] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    member_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class StockMovementListResponse(BaseModel):
    data: List[StockMovementResponse]
    total: int
    page: int
    limit: int


class StockAdjustmentResponse(BaseModel):
    id: int
    batch_id: int
    quantity_change: int
    quantity_before: int
    quantity_after: int
    reason: str
    reason_display: str = ""
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


# ===== 库存水位 =====
class LocationLevel(BaseModel):
    location_id: int
    location_name: str
    quantity: int


class StockLevelItem(BaseModel):
    product_id: int
    product_name: str
    sku: str
    category_id: Optional[int] = None
    category_name: str = ""
    total_quantity: int
    min_level: int
    max_level: Optional[int] = None
    status: str = Field(..., description="out_of_stock / low_stock / overstock / normal")
    locations: List[LocationLevel] = []


class StockLevelListResponse(BaseModel):
    data: List[StockLevelItem]
    total: int
    page: int
    limit: int

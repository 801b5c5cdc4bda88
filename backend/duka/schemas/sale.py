"""销售与退货Schema"""
from typing import Optional, List
from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal


# ===== 销售单 =====
class SaleItemResponse(BaseModel):
    id: int
    product_id: int
    variant_id: Optional[int] = None
    batch_id: Optional[int] = None
    product_name: Optional[str] = None
    quantity: int
    unit_price: Decimal
    unit_cost: Decimal = Decimal("0")
    line_total: Decimal
    returned_quantity: int = 0

    class Config:
        from_attributes = True


class SaleResponse(BaseModel):
    id: int
    sale_number: str
    customer_id: Optional[int] = None
    customer_name: str = ""
    member_id: Optional[int] = None
    member_name: str = ""
    payment_method: str
    status: str
    status_display: str = ""
    currency: str
    subtotal: Decimal
    discount_rate: Decimal
    discount_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal
    amount_paid: Decimal
    change_due: Decimal
    phone_number: Optional[str] = None
    checkout_request_id: Optional[str] = None
    mpesa_receipt: Optional[str] = None
    failure_reason: Optional[str] = None
    refund_due: bool = False
    notes: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    items: List[SaleItemResponse] = []

    class Config:
        from_attributes = True


class SaleListResponse(BaseModel):
    data: List[SaleResponse]
    total: int
    page: int
    limit: int


# ===== 退货 =====
class ReturnItemCreate(BaseModel):
    sale_item_id: int = Field(..., description="销售明细ID")
    quantity: int = Field(..., gt=0, description="退货数量")
    restock: bool = Field(default=True, description="是否退回库存")


class ReturnCreate(BaseModel):
    sale_id: int = Field(..., description="销售单ID")
    reason: str = Field(..., pattern=r"^(DEFECTIVE|WRONG_ITEM|NOT_NEEDED|EXPIRED|OTHER)$")
    notes: Optional[str] = Field(None, max_length=500)
    items: List[ReturnItemCreate] = Field(..., min_length=1)


class ReturnDecision(BaseModel):
    notes: Optional[str] = Field(None, max_length=200, description="审批意见")


class ReturnItemResponse(BaseModel):
    id: int
    sale_item_id: int
    quantity: int
    refund_amount: Decimal
    restock: bool
    product_name: str = ""

    class Config:
        from_attributes = True


class ReturnResponse(BaseModel):
    id: int
    return_number: str
    sale_id: int
    sale_number: str = ""
    status: str
    status_display: str = ""
    reason: str
    reason_display: str = ""
    notes: Optional[str] = None
    refund_amount: Decimal
    requested_by: Optional[int] = None
    decided_by: Optional[int] = None
    decided_at: Optional[datetime] = None
    decision_notes: Optional[str] = None
    created_at: datetime
    items: List[ReturnItemResponse] = []

    class Config:
        from_attributes = True


class ReturnListResponse(BaseModel):
    data: List[ReturnResponse]
    total: int
    page: int
    limit: int

"""收银Schema"""
from typing import Optional, List
from pydantic import BaseModel, Field, model_validator
from decimal import Decimal

from duka.schemas.sale import SaleResponse


class CartLine(BaseModel):
    """购物车行"""
    product_id: int = Field(..., description="商品ID")
    variant_id: Optional[int] = Field(None, description="变体ID")
    quantity: int = Field(..., gt=0, description="数量")


class QuoteRequest(BaseModel):
    items: List[CartLine] = Field(..., min_length=1, description="购物车")


class QuoteLine(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal


class QuoteResponse(BaseModel):
    currency: str
    lines: List[QuoteLine]
    subtotal: Decimal
    discount_rate: Decimal
    discount: Decimal
    tax_rate: Decimal
    tax: Decimal
    total: Decimal


class CheckoutRequest(BaseModel):
    items: List[CartLine] = Field(..., min_length=1, description="购物车")
    payment_method: str = Field(..., pattern=r"^(CASH|CARD|MPESA)$", description="支付方式")
    amount_paid: Optional[Decimal] = Field(None, ge=0, description="实收金额（现金必填）")
    phone_number: Optional[str] = Field(None, description="M-Pesa 付款手机号")
    customer_id: Optional[int] = Field(None, description="客户ID")
    location_id: Optional[int] = Field(None, description="出货地点（为空则从全部地点按策略分配）")
    notes: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def check_payment_fields(self):
        if self.payment_method == "CASH" and self.amount_paid is None:
            raise ValueError("现金支付必须填写实收金额")
        if self.payment_method == "MPESA" and not self.phone_number:
            raise ValueError("M-Pesa 支付必须填写手机号")
        return self


class CheckoutResponse(BaseModel):
    state: str = Field(..., description="收银状态：processing / success / failed")
    sale: SaleResponse
    change_due: Decimal = Decimal("0")
    checkout_request_id: Optional[str] = None
    message: str = ""

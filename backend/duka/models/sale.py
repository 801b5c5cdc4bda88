"""
销售模型 - POS 收银单及明细
一个销售明细对应一个出货批次（按组织库存策略分配，可能拆成多行）
"""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, DECIMAL, Boolean, UniqueConstraint
from sqlalchemy.orm import relationship
from duka.db.base import Base


PAYMENT_METHODS = ("CASH", "CARD", "MPESA")

# 与收银状态机一致：processing 仅出现在等待 M-Pesa 回调的销售单上
SALE_STATUSES = ("processing", "success", "failed")


class Sale(Base):
    """销售单"""
    __tablename__ = "sales"
    __table_args__ = (
        UniqueConstraint('organization_id', 'sale_number', name='uq_sale_org_number'),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    # 销售单号（SL + 日期 + 序号，如 SL20250604-001）
    sale_number = Column(String(50), nullable=False, index=True, comment="销售单号")

    customer_id = Column(Integer, ForeignKey("parties.id"), comment="客户")
    member_id = Column(Integer, ForeignKey("members.id"), comment="收银员")
    location_id = Column(Integer, ForeignKey("inventory_locations.id"), comment="出货地点")

    payment_method = Column(String(10), nullable=False, comment="支付方式")
    status = Column(String(20), nullable=False, default="success", index=True, comment="状态")

    # === 金额 ===
    currency = Column(String(10), nullable=False, default="KES", comment="币种")
    subtotal = Column(DECIMAL(14, 2), nullable=False, default=Decimal("0.00"), comment="小计")
    discount_rate = Column(DECIMAL(6, 4), default=Decimal("0"), comment="折扣率")
    discount_amount = Column(DECIMAL(14, 2), nullable=False, default=Decimal("0.00"), comment="折扣")
    tax_rate = Column(DECIMAL(6, 4), default=Decimal("0"), comment="税率")
    tax_amount = Column(DECIMAL(14, 2), nullable=False, default=Decimal("0.00"), comment="税额")
    total = Column(DECIMAL(14, 2), nullable=False, default=Decimal("0.00"), comment="应收")
    amount_paid = Column(DECIMAL(14, 2), default=Decimal("0.00"), comment="实收")
    change_due = Column(DECIMAL(14, 2), default=Decimal("0.00"), comment="找零")

    # === M-Pesa ===
    phone_number = Column(String(20), comment="付款手机号")
    checkout_request_id = Column(String(100), index=True, comment="STK CheckoutRequestID")
    mpesa_receipt = Column(String(50), comment="M-Pesa 收据号")
    failure_reason = Column(String(200), comment="失败原因")
    # 销售单已失败（取消/超时/金额不符）但客户实际付了款，需人工退款
    refund_due = Column(Boolean, nullable=False, default=False, comment="待退款")

    notes = Column(Text, comment="备注")
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    completed_at = Column(DateTime, comment="完成时间")

    items = relationship("SaleItem", back_populates="sale", cascade="all, delete-orphan")
    customer = relationship("Party", foreign_keys=[customer_id])
    member = relationship("Member", foreign_keys=[member_id])

    def __repr__(self):
        return f"<Sale {self.sale_number}: {self.total} {self.status}>"

    @property
    def status_display(self) -> str:
        status_map = {
            "processing": "待支付",
            "success": "已完成",
            "failed": "支付失败",
        }
        return status_map.get(self.status, self.status)

    @property
    def total_cost(self) -> Decimal:
        return sum((item.cost_amount for item in self.items), Decimal("0"))


class SaleItem(Base):
    """销售明细 - 一行对应一个批次"""
    __tablename__ = "sale_items"

    id = Column(Integer, primary_key=True, index=True)
    sale_id = Column(Integer, ForeignKey("sales.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    variant_id = Column(Integer, ForeignKey("product_variants.id"))
    batch_id = Column(Integer, ForeignKey("stock_batches.id"), index=True, comment="出货批次")

    product_name = Column(String(200), comment="品名快照")
    quantity = Column(Integer, nullable=False, comment="数量")
    unit_price = Column(DECIMAL(12, 2), nullable=False, comment="单价")
    # 出货时的批次进货价
    unit_cost = Column(DECIMAL(12, 2), default=Decimal("0.00"), comment="成本单价")
    line_total = Column(DECIMAL(14, 2), nullable=False, comment="小计")

    sale = relationship("Sale", back_populates="items")
    batch = relationship("StockBatch", foreign_keys=[batch_id])

    def __repr__(self):
        return f"<SaleItem sale:{self.sale_id} batch:{self.batch_id} qty:{self.quantity}>"

    @property
    def cost_amount(self) -> Decimal:
        return (self.unit_cost or Decimal("0")) * self.quantity

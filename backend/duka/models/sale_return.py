"""
退货模型 - 客户退货申请及审批
审批通过后，勾选了"入库"的明细退回原批次
"""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, DECIMAL, UniqueConstraint
from sqlalchemy.orm import relationship
from duka.db.base import Base


RETURN_STATUSES = ("PENDING", "APPROVED", "REJECTED")
RETURN_REASONS = ("DEFECTIVE", "WRONG_ITEM", "NOT_NEEDED", "EXPIRED", "OTHER")


class SaleReturn(Base):
    """退货单"""
    __tablename__ = "sale_returns"
    __table_args__ = (
        UniqueConstraint('organization_id', 'return_number', name='uq_return_org_number'),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    # 退货单号（RT + 日期 + 序号）
    return_number = Column(String(50), nullable=False, index=True, comment="退货单号")
    sale_id = Column(Integer, ForeignKey("sales.id"), nullable=False, index=True)

    status = Column(String(20), nullable=False, default="PENDING", index=True, comment="状态")
    reason = Column(String(20), nullable=False, comment="退货原因")
    notes = Column(Text, comment="备注")
    refund_amount = Column(DECIMAL(14, 2), nullable=False, default=Decimal("0.00"), comment="退款金额")

    requested_by = Column(Integer, ForeignKey("members.id"), comment="申请人")
    decided_by = Column(Integer, ForeignKey("members.id"), comment="审批人")
    decided_at = Column(DateTime, comment="审批时间")
    decision_notes = Column(String(200), comment="审批意见")

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    sale = relationship("Sale", foreign_keys=[sale_id])
    items = relationship("SaleReturnItem", back_populates="sale_return", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<SaleReturn {self.return_number}: {self.status}>"

    @property
    def is_pending(self) -> bool:
        return self.status == "PENDING"

    @property
    def status_display(self) -> str:
        status_map = {
            "PENDING": "待审批",
            "APPROVED": "已通过",
            "REJECTED": "已驳回",
        }
        return status_map.get(self.status, self.status)

    @property
    def reason_display(self) -> str:
        reason_map = {
            "DEFECTIVE": "质量问题",
            "WRONG_ITEM": "发错货",
            "NOT_NEEDED": "不需要了",
            "EXPIRED": "已过期",
            "OTHER": "其他",
        }
        return reason_map.get(self.reason, self.reason)


class SaleReturnItem(Base):
    """退货明细"""
    __tablename__ = "sale_return_items"

    id = Column(Integer, primary_key=True, index=True)
    return_id = Column(Integer, ForeignKey("sale_returns.id"), nullable=False, index=True)
    sale_item_id = Column(Integer, ForeignKey("sale_items.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, comment="退货数量")
    refund_amount = Column(DECIMAL(14, 2), nullable=False, default=Decimal("0.00"), comment="退款金额")
    # 是否退回库存（损坏商品不入库）
    restock = Column(Boolean, nullable=False, default=True, comment="是否入库")

    sale_return = relationship("SaleReturn", back_populates="items")
    sale_item = relationship("SaleItem", foreign_keys=[sale_item_id])

    def __repr__(self):
        return f"<SaleReturnItem return:{self.return_id} item:{self.sale_item_id} qty:{self.quantity}>"

"""
库存批次模型 - 每次入库一个批次，独立追踪成本、保质期和存放货位
支持：
- 批次独立成本（每批进货价不同）
- 保质期追踪（FEFO 先到期先出）
- 货位存放（一个货位最多放一个批次）
- 混批销售（一个销售明细可以从多个批次出货）
"""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, DECIMAL, UniqueConstraint
from sqlalchemy.orm import relationship
from duka.db.base import Base


class StockBatch(Base):
    """库存批次"""
    __tablename__ = "stock_batches"
    __table_args__ = (
        UniqueConstraint('organization_id', 'batch_number', name='uq_batch_org_number'),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    # 批次号（自动生成，格式：BT + 日期 + 序号，如 BT20250604-001；部分移库产生的新批次加 -M1 后缀）
    batch_number = Column(String(60), nullable=False, index=True, comment="批次号")

    # 关联商品
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), comment="商品变体ID")

    # 存放位置
    location_id = Column(Integer, ForeignKey("inventory_locations.id"), nullable=False, index=True, comment="存放地点")
    position_id = Column(Integer, ForeignKey("storage_positions.id"), index=True, comment="存放货位")

    # 来源供应商
    supplier_id = Column(Integer, ForeignKey("parties.id"), index=True, comment="来源供应商")

    # === 数量 ===
    initial_quantity = Column(Integer, nullable=False, comment="初始数量")
    current_quantity = Column(Integer, nullable=False, comment="当前数量")

    # === 成本 ===
    purchase_price = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"), comment="进货单价")

    # === 日期 ===
    expiry_date = Column(DateTime, comment="到期日期")
    received_date = Column(DateTime, default=datetime.utcnow, comment="入库日期")

    # active: 在库  partial: 部分在库  depleted: 已清空
    status = Column(String(20), default="active", index=True, comment="状态")

    notes = Column(Text, comment="备注")

    created_by = Column(Integer, ForeignKey("members.id"))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    product = relationship("Product", foreign_keys=[product_id])
    variant = relationship("ProductVariant", foreign_keys=[variant_id])
    location = relationship("InventoryLocation", foreign_keys=[location_id])
    position = relationship("StoragePosition", foreign_keys=[position_id])
    supplier = relationship("Party", foreign_keys=[supplier_id])

    def __repr__(self):
        return f"<StockBatch {self.batch_number}: {self.current_quantity}/{self.initial_quantity}>"

    @property
    def is_expired(self) -> bool:
        return bool(self.expiry_date and self.expiry_date < datetime.utcnow())

    @property
    def stock_value(self) -> Decimal:
        """库存金额 = 进货单价 × 当前数量"""
        return (self.purchase_price or Decimal("0")) * max(self.current_quantity or 0, 0)

    @property
    def status_display(self) -> str:
        status_map = {
            "active": "在库",
            "partial": "部分在库",
            "depleted": "已清空",
        }
        return status_map.get(self.status, self.status)

    def update_status(self):
        """根据数量更新状态"""
        if self.current_quantity <= 0:
            self.status = "depleted"
        elif self.current_quantity < self.initial_quantity:
            self.status = "partial"
        else:
            self.status = "active"

"""
库存流水模型 - 记录每次批次数量/位置变动（只追加，不修改）
以及库存调整单（盘点、报损、报溢）
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from duka.db.base import Base


MOVEMENT_TYPES = ("RECEIPT", "MOVE", "SALE", "RETURN", "ADJUSTMENT")

ADJUSTMENT_REASONS = (
    "DAMAGED", "EXPIRED", "LOST", "FOUND", "COUNT_CORRECTION", "INITIAL_STOCK", "OTHER",
)


class StockMovement(Base):
    """库存流水"""
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    batch_id = Column(Integer, ForeignKey("stock_batches.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)

    # RECEIPT: 入库  MOVE: 移库  SALE: 销售出库  RETURN: 退货入库  ADJUSTMENT: 调整
    movement_type = Column(String(20), nullable=False, index=True, comment="流水类型")

    # 变动数量（正数增加，负数减少；移库为移动数量）
    quantity = Column(Integer, nullable=False, comment="数量")

    from_location_id = Column(Integer, ForeignKey("inventory_locations.id"), comment="来源地点")
    from_position_id = Column(Integer, ForeignKey("storage_positions.id"), comment="来源货位")
    to_location_id = Column(Integer, ForeignKey("inventory_locations.id"), comment="目标地点")
    to_position_id = Column(Integer, ForeignKey("storage_positions.id"), comment="目标货位")

    # 关联单据编号（销售单号、退货单号、调整单ID等）
    reference = Column(String(60), index=True, comment="关联单据")
    notes = Column(String(200), comment="备注")

    member_id = Column(Integer, ForeignKey("members.id"), comment="操作人")
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    batch = relationship("StockBatch", foreign_keys=[batch_id])

    def __repr__(self):
        return f"<StockMovement {self.movement_type} batch:{self.batch_id} {self.quantity:+d}>"

    @property
    def type_display(self) -> str:
        type_map = {
            "RECEIPT": "入库",
            "MOVE": "移库",
            "SALE": "销售出库",
            "RETURN": "退货入库",
            "ADJUSTMENT": "调整",
        }
        return type_map.get(self.movement_type, self.movement_type)


class StockAdjustment(Base):
    """库存调整单 - 报损、报溢、盘点更正"""
    __tablename__ = "stock_adjustments"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    batch_id = Column(Integer, ForeignKey("stock_batches.id"), nullable=False, index=True)

    # 调整数量（非零；正数为报溢，负数为报损）
    quantity_change = Column(Integer, nullable=False, comment="调整数量")
    quantity_before = Column(Integer, nullable=False, comment="调整前数量")
    quantity_after = Column(Integer, nullable=False, comment="调整后数量")

    reason = Column(String(30), nullable=False, comment="调整原因")
    notes = Column(Text, comment="备注")

    member_id = Column(Integer, ForeignKey("members.id"), comment="操作人")
    created_at = Column(DateTime, default=datetime.utcnow)

    batch = relationship("StockBatch", foreign_keys=[batch_id])

    def __repr__(self):
        return f"<StockAdjustment batch:{self.batch_id} {self.quantity_change:+d} ({self.reason})>"

    @property
    def reason_display(self) -> str:
        reason_map = {
            "DAMAGED": "损坏",
            "EXPIRED": "过期",
            "LOST": "丢失",
            "FOUND": "盘盈",
            "COUNT_CORRECTION": "盘点更正",
            "INITIAL_STOCK": "期初库存",
            "OTHER": "其他",
        }
        return reason_map.get(self.reason, self.reason)

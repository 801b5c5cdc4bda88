"""
仓储层级模型 - 仓库 → 库区 → 存储单元 → 货位

容量计数（capacity_used）按库存数量计，随批次的入库、移库、出库、
退货在同一事务内更新；可通过对账接口从批次重新计算。
一个货位同一时间最多存放一个批次（is_occupied）。
"""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, DECIMAL, UniqueConstraint
from sqlalchemy.orm import relationship
from duka.db.base import Base


class InventoryLocation(Base):
    """库存地点 - 仓库或门店"""
    __tablename__ = "inventory_locations"
    __table_args__ = (
        UniqueConstraint('organization_id', 'code', name='uq_location_org_code'),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    name = Column(String(100), nullable=False, comment="名称")
    code = Column(String(50), nullable=False, comment="编码（自动生成）")
    # WAREHOUSE / RETAIL_SHOP / KITCHEN / COLD_ROOM
    location_type = Column(String(20), nullable=False, default="WAREHOUSE", comment="地点类型")
    description = Column(Text, comment="描述")
    address = Column(String(200), comment="地址")

    # === 容量 ===
    capacity_tracking = Column(Boolean, default=True, comment="是否跟踪容量")
    total_capacity = Column(DECIMAL(12, 2), default=Decimal("0.00"), comment="总容量")
    capacity_unit = Column(String(20), default="UNITS", comment="容量单位")
    capacity_used = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"), comment="已用容量")

    is_default = Column(Boolean, default=False, comment="是否默认地点")
    is_active = Column(Boolean, default=True, comment="是否启用")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    zones = relationship("StorageZone", back_populates="location", cascade="all, delete-orphan")
    units = relationship("StorageUnit", back_populates="location", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<InventoryLocation {self.code}: {self.capacity_used}/{self.total_capacity}>"

    @property
    def type_display(self) -> str:
        type_map = {
            "WAREHOUSE": "仓库",
            "RETAIL_SHOP": "门店",
            "KITCHEN": "厨房",
            "COLD_ROOM": "冷库",
        }
        return type_map.get(self.location_type, self.location_type)


class StorageZone(Base):
    """库区 - 属于一个仓库"""
    __tablename__ = "storage_zones"

    id = Column(Integer, primary_key=True, index=True)
    location_id = Column(Integer, ForeignKey("inventory_locations.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False, comment="库区名称")
    description = Column(Text, comment="描述")
    capacity = Column(DECIMAL(12, 2), default=Decimal("0.00"), comment="容量")
    capacity_unit = Column(String(20), default="UNITS", comment="容量单位")
    capacity_used = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"), comment="已用容量")
    is_active = Column(Boolean, default=True, comment="是否启用")
    created_at = Column(DateTime, default=datetime.utcnow)

    location = relationship("InventoryLocation", back_populates="zones")
    units = relationship("StorageUnit", back_populates="zone")

    def __repr__(self):
        return f"<StorageZone {self.id}: {self.name}>"


class StorageUnit(Base):
    """存储单元 - 货架/托盘架/冷柜等，属于一个仓库，可选属于某个库区"""
    __tablename__ = "storage_units"

    id = Column(Integer, primary_key=True, index=True)
    location_id = Column(Integer, ForeignKey("inventory_locations.id"), nullable=False, index=True)
    zone_id = Column(Integer, ForeignKey("storage_zones.id"), nullable=True, index=True)
    name = Column(String(100), nullable=False, comment="名称")
    # RACK / SHELF / BIN / PALLET / FREEZER / FLOOR
    unit_type = Column(String(20), nullable=False, default="SHELF", comment="单元类型")
    capacity = Column(DECIMAL(12, 2), default=Decimal("0.00"), comment="容量")
    capacity_unit = Column(String(20), default="UNITS", comment="容量单位")
    capacity_used = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"), comment="已用容量")
    is_active = Column(Boolean, default=True, comment="是否启用")
    created_at = Column(DateTime, default=datetime.utcnow)

    location = relationship("InventoryLocation", back_populates="units")
    zone = relationship("StorageZone", back_populates="units")
    positions = relationship("StoragePosition", back_populates="storage_unit", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<StorageUnit {self.id}: {self.name} ({self.unit_type})>"


class StoragePosition(Base):
    """货位 - 最小存放单位，同一时间最多放一个批次"""
    __tablename__ = "storage_positions"
    __table_args__ = (
        UniqueConstraint('storage_unit_id', 'identifier', name='uq_position_unit_identifier'),
    )

    id = Column(Integer, primary_key=True, index=True)
    storage_unit_id = Column(Integer, ForeignKey("storage_units.id"), nullable=False, index=True)
    identifier = Column(String(50), nullable=False, comment="货位编号，如 A1-1")
    is_occupied = Column(Boolean, nullable=False, default=False, comment="是否占用")
    created_at = Column(DateTime, default=datetime.utcnow)

    storage_unit = relationship("StorageUnit", back_populates="positions")

    def __repr__(self):
        return f"<StoragePosition {self.identifier} occupied={self.is_occupied}>"

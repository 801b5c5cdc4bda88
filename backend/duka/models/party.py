"""
往来方模型 - 统一的供应商/客户
供应商、客户本质上都是"往来方"，只是角色不同
一个往来方可以同时扮演多种角色
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, UniqueConstraint
from duka.db.base import Base


class Party(Base):
    """往来方 - 供应商/客户"""
    __tablename__ = "parties"
    __table_args__ = (
        UniqueConstraint('organization_id', 'code', name='uq_party_org_code'),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    # 基本信息
    name = Column(String(100), nullable=False, index=True, comment="名称")
    code = Column(String(50), nullable=False, index=True, comment="编码（自动生成）")

    # supplier(供应商), customer(客户)
    # 用逗号分隔表示多重身份，如 "supplier,customer"
    party_type = Column(String(50), nullable=False, default="supplier", comment="往来方类型")

    # 联系信息
    contact_name = Column(String(50), comment="联系人")
    phone = Column(String(20), comment="电话")
    email = Column(String(200), comment="邮箱")
    address = Column(String(200), comment="地址")
    notes = Column(Text, comment="备注")

    # 客户积分（POS 会员）
    loyalty_points = Column(Integer, default=0, comment="积分")

    is_active = Column(Boolean, default=True, comment="是否启用")

    created_by = Column(Integer, ForeignKey("members.id"))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Party {self.code}: {self.name} ({self.party_type})>"

    @property
    def is_supplier(self) -> bool:
        return "supplier" in self.party_type

    @property
    def is_customer(self) -> bool:
        return "customer" in self.party_type

    @property
    def type_display(self) -> str:
        """类型显示名称"""
        types = []
        if self.is_supplier:
            types.append("供应商")
        if self.is_customer:
            types.append("客户")
        return "/".join(types) if types else "未知"

"""
组织模型 - 多租户的根
每个组织有自己的收银费率、库存消耗策略和低库存阈值
成员（Member）是组织内执行操作的人：收银员、仓管员、经理等
"""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, DECIMAL, UniqueConstraint
from sqlalchemy.orm import relationship
from duka.db.base import Base


# 库存消耗策略
INVENTORY_POLICIES = ("FIFO", "LIFO", "FEFO")


class Organization(Base):
    """组织 - 一个商户/餐厅"""
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, comment="组织名称")
    slug = Column(String(100), unique=True, nullable=False, index=True, comment="URL标识")

    # === 收银设置 ===
    currency = Column(String(10), nullable=False, default="KES", comment="结算币种")
    # NULL 表示使用系统默认费率（settings.DEFAULT_TAX_RATE / DEFAULT_DISCOUNT_RATE）
    default_tax_rate = Column(DECIMAL(6, 4), comment="默认税率，如 0.16")
    default_discount_rate = Column(DECIMAL(6, 4), comment="默认折扣率，如 0.10")

    # === 库存设置 ===
    # FIFO: 先进先出  LIFO: 后进先出  FEFO: 先到期先出
    inventory_policy = Column(String(10), nullable=False, default="FIFO", comment="库存消耗策略")
    low_stock_threshold = Column(Integer, nullable=False, default=10, comment="低库存阈值")
    allow_negative_stock = Column(Boolean, nullable=False, default=False, comment="是否允许负库存")

    is_active = Column(Boolean, default=True, comment="是否启用")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    members = relationship("Member", back_populates="organization")

    def __repr__(self):
        return f"<Organization {self.slug}: {self.name}>"

    @property
    def policy_display(self) -> str:
        policy_map = {
            "FIFO": "先进先出",
            "LIFO": "后进先出",
            "FEFO": "先到期先出",
        }
        return policy_map.get(self.inventory_policy, self.inventory_policy)

    def tax_rate_or(self, fallback: Decimal) -> Decimal:
        return self.default_tax_rate if self.default_tax_rate is not None else fallback

    def discount_rate_or(self, fallback: Decimal) -> Decimal:
        return self.default_discount_rate if self.default_discount_rate is not None else fallback


class Member(Base):
    """组织成员 - 业务操作人"""
    __tablename__ = "members"
    __table_args__ = (
        UniqueConstraint('organization_id', 'email', name='uq_member_org_email'),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False, comment="姓名")
    email = Column(String(200), comment="邮箱")
    # owner / manager / cashier / storekeeper
    role = Column(String(20), nullable=False, default="cashier", comment="角色")
    is_active = Column(Boolean, default=True, comment="是否启用")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    organization = relationship("Organization", back_populates="members")

    def __repr__(self):
        return f"<Member {self.id}: {self.name} ({self.role})>"

    @property
    def role_display(self) -> str:
        role_map = {
            "owner": "店主",
            "manager": "经理",
            "cashier": "收银员",
            "storekeeper": "仓管员",
        }
        return role_map.get(self.role, self.role)

    @property
    def can_approve_returns(self) -> bool:
        return self.role in ("owner", "manager")

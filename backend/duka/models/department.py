"""部门模型"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from duka.db.base import Base


class Department(Base):
    """部门 - 如前厅、后厨、仓储"""
    __tablename__ = "departments"
    __table_args__ = (
        UniqueConstraint('organization_id', 'code', name='uq_department_org_code'),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False, comment="部门名称")
    code = Column(String(50), nullable=False, comment="部门编码（自动生成）")
    description = Column(Text, comment="描述")
    head_member_id = Column(Integer, ForeignKey("members.id"), comment="负责人")
    is_active = Column(Boolean, default=True, comment="是否启用")

    created_by = Column(Integer, ForeignKey("members.id"))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    head = relationship("Member", foreign_keys=[head_member_id])

    def __repr__(self):
        return f"<Department {self.code}: {self.name}>"

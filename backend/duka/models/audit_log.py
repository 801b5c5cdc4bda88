"""
操作日志模型 - 记录移库、调整、入库、销售、退货审批等重要操作
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import relationship
from duka.db.base import Base


class AuditLog(Base):
    """操作日志 - 审计追踪"""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    # 操作人（系统任务为空）
    member_id = Column(Integer, ForeignKey("members.id"), index=True)

    # create / update / delete / move / adjust / receive / sale / approve / reject / reconcile
    action = Column(String(20), nullable=False, index=True, comment="操作类型")

    # batch / sale / return / warehouse / product / organization ...
    resource_type = Column(String(50), nullable=False, index=True, comment="资源类型")
    resource_id = Column(Integer, index=True, comment="资源ID")
    resource_name = Column(String(100), comment="资源名称")
    description = Column(String(500), comment="操作描述")

    old_value = Column(JSON, comment="修改前")
    new_value = Column(JSON, comment="修改后")

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    member = relationship("Member", foreign_keys=[member_id])

    def __repr__(self):
        return f"<AuditLog {self.action} {self.resource_type}:{self.resource_id}>"

    @property
    def action_display(self) -> str:
        action_map = {
            "create": "创建",
            "update": "更新",
            "delete": "删除",
            "move": "移库",
            "adjust": "调整",
            "receive": "入库",
            "sale": "销售",
            "approve": "审批通过",
            "reject": "驳回",
            "reconcile": "容量对账",
        }
        return action_map.get(self.action, self.action)

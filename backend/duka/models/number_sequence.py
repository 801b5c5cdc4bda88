"""
单据流水号模型 - 每个组织、每个前缀一行，记录已发出的最后一个序号
前缀如 SL20250604（销售单按天）、BT20250604-001-M（批次拆分）
"""

from sqlalchemy import Column, Integer, String, ForeignKey, UniqueConstraint
from duka.db.base import Base


class NumberSequence(Base):
    """单据流水号"""
    __tablename__ = "number_sequences"
    __table_args__ = (
        UniqueConstraint('organization_id', 'prefix', name='uq_sequence_org_prefix'),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    prefix = Column(String(80), nullable=False, comment="编号前缀")
    last_value = Column(Integer, nullable=False, default=0, comment="最后序号")

    def __repr__(self):
        return f"<NumberSequence {self.prefix}: {self.last_value}>"

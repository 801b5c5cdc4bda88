"""
商品目录模型 - 分类、商品、商品变体
库存批次只引用商品/变体，不修改它们
"""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, UniqueConstraint, DECIMAL
from sqlalchemy.orm import relationship
from duka.db.base import Base


class Category(Base):
    """商品分类（支持父子层级）"""
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False, comment="分类名称")
    parent_id = Column(Integer, ForeignKey("categories.id"), nullable=True, comment="父分类ID")
    description = Column(String(500), comment="描述")
    is_active = Column(Boolean, default=True, comment="是否启用")
    created_at = Column(DateTime, default=datetime.utcnow)

    parent = relationship("Category", remote_side=[id], backref="children")
    products = relationship("Product", back_populates="category")

    def __repr__(self):
        return f"<Category {self.id}: {self.name}>"


class Product(Base):
    """商品"""
    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint('organization_id', 'sku', name='uq_product_org_sku'),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    name = Column(String(200), nullable=False, index=True, comment="品名")
    sku = Column(String(64), nullable=False, index=True, comment="SKU")
    category_id = Column(Integer, ForeignKey("categories.id"), comment="分类ID")
    description = Column(Text, comment="描述")
    image_urls = Column(Text, comment="图片地址（逗号分隔）")

    # 价格
    base_price = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"), comment="售价")
    buying_price = Column(DECIMAL(12, 2), default=Decimal("0.00"), comment="进货价")

    # 补货参数（库存水位报表使用）
    reorder_point = Column(Integer, comment="补货点（最低水位）")
    reorder_quantity = Column(Integer, comment="补货量（最高水位 = 补货量 × 2）")

    is_active = Column(Boolean, default=True, comment="是否启用")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    category = relationship("Category", back_populates="products")
    variants = relationship("ProductVariant", back_populates="product", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Product {self.sku}: {self.name}>"

    @property
    def image_list(self) -> list:
        return [u for u in (self.image_urls or "").split(",") if u]


class ProductVariant(Base):
    """商品变体（规格/口味/尺寸）"""
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False, comment="变体名称，如：大杯")
    sku = Column(String(64), nullable=False, index=True, comment="变体SKU")
    # 变体售价 = 商品售价 + 加价
    price_modifier = Column(DECIMAL(12, 2), default=Decimal("0.00"), comment="加价")
    buying_price = Column(DECIMAL(12, 2), comment="变体进货价（为空时取商品进货价）")
    is_active = Column(Boolean, default=True, comment="是否启用")
    created_at = Column(DateTime, default=datetime.utcnow)

    product = relationship("Product", back_populates="variants")

    def __repr__(self):
        return f"<ProductVariant {self.sku}: {self.name}>"

    @property
    def unit_price(self) -> Decimal:
        base = self.product.base_price if self.product else Decimal("0")
        return (base or Decimal("0")) + (self.price_modifier or Decimal("0"))

# models包初始化文件
# 导入全部模型，保证 Base.metadata 建表和关系解析完整

from duka.models.organization import Organization, Member
from duka.models.department import Department
from duka.models.party import Party
from duka.models.product import Category, Product, ProductVariant
from duka.models.warehouse import InventoryLocation, StorageZone, StorageUnit, StoragePosition
from duka.models.stock_batch import StockBatch
from duka.models.stock_movement import StockMovement, StockAdjustment
from duka.models.sale import Sale, SaleItem
from duka.models.sale_return import SaleReturn, SaleReturnItem
from duka.models.audit_log import AuditLog
from duka.models.number_sequence import NumberSequence

__all__ = [
    "Organization",
    "Member",
    "Department",
    "Party",
    "Category",
    "Product",
    "ProductVariant",
    "InventoryLocation",
    "StorageZone",
    "StorageUnit",
    "StoragePosition",
    "StockBatch",
    "StockMovement",
    "StockAdjustment",
    "Sale",
    "SaleItem",
    "SaleReturn",
    "SaleReturnItem",
    "AuditLog",
    "NumberSequence",
]

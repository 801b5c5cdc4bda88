"""API 路由聚合（多租户，组织由请求头指定）"""
from fastapi import APIRouter

from duka.api.api_v1.endpoints import (
    organizations, members, departments, parties,
    categories, products, warehouses, batches, stock,
    pos, payments, sales, returns, uploads, audit_logs, system,
)

api_router = APIRouter()

# 组织与主数据
api_router.include_router(organizations.router, prefix="/organizations", tags=["组织管理"])
api_router.include_router(members.router, prefix="/members", tags=["成员管理"])
api_router.include_router(departments.router, prefix="/departments", tags=["部门管理"])
api_router.include_router(parties.router, prefix="/parties", tags=["供应商/客户"])

# 商品与仓储
api_router.include_router(categories.router, prefix="/categories", tags=["商品分类"])
api_router.include_router(products.router, prefix="/products", tags=["商品管理"])
api_router.include_router(warehouses.router, prefix="/warehouses", tags=["仓库管理"])
api_router.include_router(batches.router, prefix="/batches", tags=["批次管理"])
api_router.include_router(stock.router, prefix="/stock", tags=["库存查询"])

# 收银与销售
api_router.include_router(pos.router, prefix="/pos", tags=["收银"])
api_router.include_router(payments.router, prefix="/payments", tags=["支付回调"])
api_router.include_router(sales.router, prefix="/sales", tags=["销售单"])
api_router.include_router(returns.router, prefix="/returns", tags=["退货审批"])

# 系统
api_router.include_router(uploads.router, tags=["文件上传"])
api_router.include_router(audit_logs.router, prefix="/audit-logs", tags=["操作日志"])
api_router.include_router(system.router, prefix="/system", tags=["系统管理"])

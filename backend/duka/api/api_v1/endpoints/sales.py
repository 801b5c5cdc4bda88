"""销售单API - 查询、小票、退货申请"""

from typing import Any, Dict, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from duka.core.deps import get_db, get_org_context, require_member, OrgContext
from duka.models.sale import Sale
from duka.models.sale_return import SaleReturn, SaleReturnItem
from duka.schemas.sale import (
    SaleResponse, SaleListResponse, SaleItemResponse,
    ReturnCreate, ReturnResponse, ReturnItemResponse, ReturnListResponse,
)
from duka.services.receipt import build_receipt_pdf
from duka.services.sales import (
    ReturnRejected, create_return, get_sale_with_items, returned_quantities,
)

router = APIRouter()


def build_sale_response(sale: Sale, returned: Optional[Dict[int, int]] = None) -> SaleResponse:
    """构建销售单响应（需已加载明细/客户/收银员）"""
    returned = returned or {}
    resp = SaleResponse.model_validate(sale)
    resp.customer_name = sale.customer.name if sale.customer else ""
    resp.member_name = sale.member.name if sale.member else ""
    resp.items = []
    for item in sale.items:
        item_resp = SaleItemResponse.model_validate(item)
        item_resp.returned_quantity = returned.get(item.id, 0)
        resp.items.append(item_resp)
    return resp


def build_return_response(sale_return: SaleReturn) -> ReturnResponse:
    """构建退货单响应（需已加载销售单和明细）"""
    resp = ReturnResponse.model_validate(sale_return)
    resp.sale_number = sale_return.sale.sale_number if sale_return.sale else ""
    resp.items = []
    for item in sale_return.items:
        item_resp = ReturnItemResponse.model_validate(item)
        item_resp.product_name = item.sale_item.product_name if item.sale_item else ""
        resp.items.append(item_resp)
    return resp


def return_query():
    return select(SaleReturn).options(
        selectinload(SaleReturn.sale),
        selectinload(SaleReturn.items).selectinload(SaleReturnItem.sale_item),
    )


async def load_return(db: AsyncSession, return_id: int, organization_id: int) -> SaleReturn:
    result = await db.execute(
        return_query()
        .where(SaleReturn.id == return_id, SaleReturn.organization_id == organization_id)
        .execution_options(populate_existing=True)
    )
    sale_return = result.scalar_one_or_none()
    if not sale_return:
        raise HTTPException(status_code=404, detail="退货单不存在")
    return sale_return


async def load_sale(db: AsyncSession, sale_id: int, organization_id: int) -> Sale:
    sale = await get_sale_with_items(db, sale_id, organization_id)
    if not sale:
        raise HTTPException(status_code=404, detail="销售单不存在")
    return sale


@router.get("/", response_model=SaleListResponse)
async def list_sales(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None, description="processing / success / failed"),
    payment_method: Optional[str] = Query(None),
    customer_id: Optional[int] = Query(None),
    member_id: Optional[int] = Query(None, description="收银员"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    refund_due: Optional[bool] = Query(None, description="失败后收到付款、待退款"),
    search: Optional[str] = Query(None, description="搜索单号/M-Pesa 收据号"),
) -> Any:
    """获取销售单列表"""
    conditions = [Sale.organization_id == ctx.organization_id]
    if status:
        conditions.append(Sale.status == status)
    if payment_method:
        conditions.append(Sale.payment_method == payment_method)
    if customer_id:
        conditions.append(Sale.customer_id == customer_id)
    if member_id:
        conditions.append(Sale.member_id == member_id)
    if start_date:
        conditions.append(Sale.created_at >= start_date)
    if end_date:
        conditions.append(Sale.created_at <= end_date)
    if refund_due is not None:
        conditions.append(Sale.refund_due == refund_due)
    if search:
        conditions.append(Sale.sale_number.contains(search) | Sale.mpesa_receipt.contains(search))

    total = (await db.execute(
        select(func.count()).select_from(select(Sale.id).where(and_(*conditions)).subquery())
    )).scalar()

    query = (select(Sale)
             .options(selectinload(Sale.items), selectinload(Sale.customer), selectinload(Sale.member))
             .where(and_(*conditions))
             .order_by(Sale.created_at.desc(), Sale.id.desc())
             .offset((page - 1) * limit).limit(limit))
    sales = (await db.execute(query)).scalars().all()
    return SaleListResponse(
        data=[build_sale_response(s) for s in sales],
        total=total, page=page, limit=limit,
    )


# ===== 退货（固定路径放在 /{sale_id} 之前） =====

@router.get("/returns", response_model=ReturnListResponse)
async def list_returns(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None, description="PENDING / APPROVED / REJECTED"),
    sale_id: Optional[int] = Query(None),
    reason: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="搜索退货单号"),
) -> Any:
    """获取退货单列表"""
    conditions = [SaleReturn.organization_id == ctx.organization_id]
    if status:
        conditions.append(SaleReturn.status == status)
    if sale_id:
        conditions.append(SaleReturn.sale_id == sale_id)
    if reason:
        conditions.append(SaleReturn.reason == reason)
    if search:
        conditions.append(SaleReturn.return_number.contains(search))

    total = (await db.execute(
        select(func.count()).select_from(select(SaleReturn.id).where(and_(*conditions)).subquery())
    )).scalar()

    query = (return_query().where(and_(*conditions))
             .order_by(SaleReturn.created_at.desc(), SaleReturn.id.desc())
             .offset((page - 1) * limit).limit(limit))
    returns = (await db.execute(query)).scalars().all()
    return ReturnListResponse(
        data=[build_return_response(r) for r in returns],
        total=total, page=page, limit=limit,
    )


@router.post("/returns", response_model=ReturnResponse)
async def request_return(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_member),
    return_in: ReturnCreate,
) -> Any:
    """提交退货申请（待审批）"""
    try:
        sale_return = await create_return(db, organization=ctx.organization, member=ctx.member, payload=return_in)
    except ReturnRejected as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    await db.commit()
    return build_return_response(await load_return(db, sale_return.id, ctx.organization_id))


@router.get("/{sale_id}", response_model=SaleResponse)
async def get_sale(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    sale_id: int,
) -> Any:
    """获取销售单详情（含已退数量）"""
    sale = await load_sale(db, sale_id, ctx.organization_id)
    returned = await returned_quantities(db, [item.id for item in sale.items])
    return build_sale_response(sale, returned)


@router.get("/{sale_id}/receipt")
async def download_receipt(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    sale_id: int,
) -> Any:
    """下载小票（PDF）"""
    sale = await load_sale(db, sale_id, ctx.organization_id)
    if sale.status != "success":
        raise HTTPException(status_code=400, detail="销售单未完成，不能打印小票")
    pdf = build_receipt_pdf(sale, ctx.organization)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{sale.sale_number}.pdf"'},
    )

"""
收银API - 报价、结账、等待移动支付结果、取消

收银状态：idle → method_selected → processing → success / failed
现金/刷卡当场完成；M-Pesa 发起后停在 processing，等回调或超时
"""

import logging
from typing import Any, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from duka.core.config import settings
from duka.core.deps import get_db, get_org_context, require_member, OrgContext
from duka.models.sale import Sale
from duka.schemas.pos import QuoteRequest, QuoteResponse, QuoteLine, CheckoutRequest, CheckoutResponse
from duka.services import checkout as co
from duka.services.batch_allocation import InsufficientStock
from duka.services.mpesa import CallbackResult, MpesaClient, MpesaError, get_mpesa_client
from duka.services.payment_notifier import TIMEOUT, CANCELLED, payment_notifier
from duka.services.sales import (
    CheckoutRejected, apply_payment_result, checkout, get_sale_with_items, price_cart,
)
from duka.api.api_v1.endpoints.sales import build_sale_response

logger = logging.getLogger(__name__)

router = APIRouter()


def build_checkout_response(sale: Sale, message: str = "") -> CheckoutResponse:
    return CheckoutResponse(
        state=sale.status,
        sale=build_sale_response(sale),
        change_due=sale.change_due or 0,
        checkout_request_id=sale.checkout_request_id,
        message=message,
    )


async def load_sale(db: AsyncSession, sale_id: int, organization_id: int) -> Sale:
    sale = await get_sale_with_items(db, sale_id, organization_id)
    if not sale:
        raise HTTPException(status_code=404, detail="销售单不存在")
    return sale


@router.post("/quote", response_model=QuoteResponse)
async def quote(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    quote_in: QuoteRequest,
) -> Any:
    """购物车报价（小计、折扣、税、应收）"""
    try:
        session = await price_cart(db, ctx.organization, quote_in.items)
    except CheckoutRejected as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    discount_rate, tax_rate = co.resolve_rates(ctx.organization)
    totals = session.totals(discount_rate, tax_rate)
    return QuoteResponse(
        currency=ctx.organization.currency or settings.DEFAULT_CURRENCY,
        lines=[
            QuoteLine(
                product_id=item.product_id,
                variant_id=item.variant_id,
                name=item.name,
                unit_price=item.unit_price,
                quantity=item.quantity,
                line_total=item.line_total,
            )
            for item in session.lines
        ],
        subtotal=totals.subtotal,
        discount_rate=totals.discount_rate,
        discount=totals.discount,
        tax_rate=totals.tax_rate,
        tax=totals.tax,
        total=totals.total,
    )


@router.post("/checkout", response_model=CheckoutResponse)
async def do_checkout(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_member),
    mpesa_client: MpesaClient = Depends(get_mpesa_client),
    checkout_in: CheckoutRequest,
) -> Any:
    """结账"""
    try:
        sale, session = await checkout(
            db,
            organization=ctx.organization,
            member=ctx.member,
            request=checkout_in,
            mpesa_client=mpesa_client,
        )
    except CheckoutRejected as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except InsufficientStock as e:
        raise HTTPException(status_code=409, detail=str(e))
    except co.InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except MpesaError as e:
        # 失败的销售单和冲回的库存要留档
        await db.commit()
        raise HTTPException(status_code=502, detail=f"M-Pesa 支付发起失败：{e}")

    await db.commit()

    message = ""
    if session.state == co.PROCESSING:
        message = "已向客户手机发起付款请求，请等待确认"
    return build_checkout_response(await load_sale(db, sale.id, ctx.organization_id), message)


@router.get("/checkout/{sale_id}/wait", response_model=CheckoutResponse)
async def wait_for_payment(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    mpesa_client: MpesaClient = Depends(get_mpesa_client),
    sale_id: int,
    timeout: Optional[float] = Query(None, ge=0, le=300, description="等待秒数，默认取配置"),
) -> Any:
    """等待 M-Pesa 支付结果（超时后主动查询一次）"""
    sale = await load_sale(db, sale_id, ctx.organization_id)
    if sale.status != co.PROCESSING or not sale.checkout_request_id:
        return build_checkout_response(sale)

    # 先订阅再查库，避免漏掉两步之间到达的回调
    future = payment_notifier.subscribe(sale.checkout_request_id)
    sale = await load_sale(db, sale_id, ctx.organization_id)
    if sale.status != co.PROCESSING:
        payment_notifier.unsubscribe(sale.checkout_request_id, future)
        return build_checkout_response(sale)

    wait_seconds = settings.MPESA_CALLBACK_TIMEOUT if timeout is None else timeout
    outcome = await payment_notifier.wait(sale.checkout_request_id, wait_seconds, future=future)

    if outcome.status == CANCELLED:
        return build_checkout_response(await load_sale(db, sale_id, ctx.organization_id), "已取消等待")

    if outcome.status == TIMEOUT:
        sale = await load_sale(db, sale_id, ctx.organization_id)
        if sale.status != co.PROCESSING:
            return build_checkout_response(sale)
        try:
            data = await mpesa_client.query_status(sale.checkout_request_id)
        except MpesaError as e:
            logger.warning(f"查询 M-Pesa 支付状态失败 {sale.sale_number}: {e}")
            return build_checkout_response(sale, "等待超时，支付结果未知")
        if "ResultCode" not in data:
            return build_checkout_response(sale, "等待超时，客户尚未确认")
        result = CallbackResult(
            checkout_request_id=sale.checkout_request_id,
            merchant_request_id=data.get("MerchantRequestID", ""),
            result_code=int(data["ResultCode"]),
            result_desc=data.get("ResultDesc", ""),
        )
        await apply_payment_result(db, sale, result)
        await db.commit()
        return build_checkout_response(await load_sale(db, sale_id, ctx.organization_id), result.result_desc)

    # 回调已由 /payments/mpesa/callback 落库
    return build_checkout_response(await load_sale(db, sale_id, ctx.organization_id))


@router.post("/checkout/{sale_id}/cancel", response_model=CheckoutResponse)
async def cancel_checkout(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_member),
    sale_id: int,
) -> Any:
    """放弃等待 M-Pesa 支付：销售单记为失败并冲回库存"""
    sale = await load_sale(db, sale_id, ctx.organization_id)
    if sale.status != co.PROCESSING:
        raise HTTPException(status_code=409, detail=f"销售单已是 {sale.status_display}，不能取消")

    await apply_payment_result(db, sale, None, reason="收银员取消")
    await db.commit()
    if sale.checkout_request_id:
        payment_notifier.cancel(sale.checkout_request_id)
    return build_checkout_response(await load_sale(db, sale_id, ctx.organization_id), "已取消")

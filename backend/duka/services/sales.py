"""
销售与退货业务

收银：购物车定价 → 选择支付方式 → 扣减库存（按组织库存策略分配批次）→ 支付
- 现金/刷卡：当场完成
- M-Pesa：销售单停在 processing，等回调；支付失败时冲回库存
退货：申请（PENDING）→ 审批通过（勾选入库的明细退回原批次）或驳回
调用方负责提交事务。
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from duka.core.config import settings
from duka.models.party import Party
from duka.models.product import Product, ProductVariant
from duka.models.sale import Sale, SaleItem
from duka.models.sale_return import SaleReturn, SaleReturnItem
from duka.models.stock_batch import StockBatch
from duka.models.stock_movement import StockMovement
from duka.services import checkout as co
from duka.services.audit import create_audit_log
from duka.services.batch_allocation import allocate
from duka.services.mpesa import CallbackResult, MpesaClient, MpesaError, whole_shillings
from duka.services.numbering import generate_sale_number, generate_return_number
from duka.services.stock_ledger import apply_quantity_change

logger = logging.getLogger(__name__)


class CheckoutRejected(Exception):
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ReturnRejected(Exception):
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


# ===== 收银 =====

async def price_cart(db: AsyncSession, organization, lines: Iterable) -> co.CheckoutSession:
    """按商品当前售价构建购物车（价格以服务端为准）"""
    session = co.CheckoutSession()
    for line in lines:
        product = await db.get(Product, line.product_id)
        if not product or product.organization_id != organization.id or not product.is_active:
            raise CheckoutRejected(f"商品不存在: {line.product_id}", status_code=404)
        name = product.name
        price = product.base_price or Decimal("0")
        if line.variant_id:
            variant = await db.get(ProductVariant, line.variant_id)
            if not variant or variant.product_id != product.id or not variant.is_active:
                raise CheckoutRejected(f"商品变体不存在: {line.variant_id}", status_code=404)
            name = f"{product.name} ({variant.name})"
            price = price + (variant.price_modifier or Decimal("0"))
        session.add_item(co.CartItem(
            product_id=product.id,
            variant_id=line.variant_id,
            name=name,
            unit_price=co.money(price),
            quantity=line.quantity,
        ))
    return session


async def _deduct_line(db: AsyncSession, organization, sale: Sale, item: co.CartItem,
                       location_id: Optional[int], member_id: Optional[int]):
    product = await db.get(Product, item.product_id)
    plan = await allocate(
        db, organization=organization, product=product, variant_id=item.variant_id,
        quantity=item.quantity, location_id=location_id,
    )
    for batch, quantity in plan:
        before = batch.current_quantity
        batch.current_quantity = before - quantity
        batch.update_status()
        await apply_quantity_change(db, batch, before, batch.current_quantity)
        sale.items.append(SaleItem(
            product_id=item.product_id,
            variant_id=item.variant_id,
            batch_id=batch.id,
            product_name=item.name,
            quantity=quantity,
            unit_price=item.unit_price,
            unit_cost=batch.purchase_price,
            line_total=co.money(item.unit_price * quantity),
        ))
        db.add(StockMovement(
            organization_id=organization.id,
            batch_id=batch.id,
            product_id=item.product_id,
            movement_type="SALE",
            quantity=-quantity,
            from_location_id=batch.location_id,
            from_position_id=batch.position_id,
            reference=sale.sale_number,
            member_id=member_id,
        ))
    await db.flush()


async def restore_sale_stock(db: AsyncSession, sale: Sale, member_id: Optional[int], note: str):
    """冲回销售扣减的库存（M-Pesa 支付失败/超时）"""
    for item in sale.items:
        if not item.batch_id:
            continue
        batch = await db.get(StockBatch, item.batch_id)
        before = batch.current_quantity
        batch.current_quantity = before + item.quantity
        batch.update_status()
        await apply_quantity_change(db, batch, before, batch.current_quantity)
        db.add(StockMovement(
            organization_id=sale.organization_id,
            batch_id=batch.id,
            product_id=item.product_id,
            movement_type="SALE",
            quantity=item.quantity,
            to_location_id=batch.location_id,
            to_position_id=batch.position_id,
            reference=sale.sale_number,
            notes=note,
            member_id=member_id,
        ))


async def checkout(db: AsyncSession, *, organization, member, request,
                   mpesa_client: Optional[MpesaClient] = None):
    """
    收银结账，返回 (销售单, 收银会话)

    现金不足时不创建销售单，会话回到 method_selected
    M-Pesa 发起失败时销售单记为 failed 并冲回库存，然后抛出 MpesaError
    """
    session = await price_cart(db, organization, request.items)
    session.select_method(request.payment_method)
    discount_rate, tax_rate = co.resolve_rates(organization)
    totals = session.totals(discount_rate, tax_rate)

    if request.payment_method == "CASH":
        amount_paid = co.money(request.amount_paid)
        if amount_paid < totals.total:
            session.begin_processing()
            session.fail("实收金额不足")
            session.select_method("CASH")
            raise CheckoutRejected(f"实收金额不足：应收 {totals.total}，实收 {amount_paid}")
    else:
        amount_paid = totals.total

    if request.customer_id:
        customer = await db.get(Party, request.customer_id)
        if not customer or customer.organization_id != organization.id:
            raise CheckoutRejected("客户不存在", status_code=404)

    lines = session.lines
    session.begin_processing()

    sale = Sale(
        organization_id=organization.id,
        sale_number=await generate_sale_number(db, organization.id),
        customer_id=request.customer_id,
        member_id=member.id,
        location_id=request.location_id,
        payment_method=request.payment_method,
        status=co.PROCESSING,
        currency=organization.currency or settings.DEFAULT_CURRENCY,
        subtotal=totals.subtotal,
        discount_rate=totals.discount_rate,
        discount_amount=totals.discount,
        tax_rate=totals.tax_rate,
        tax_amount=totals.tax,
        total=totals.total,
        amount_paid=amount_paid,
        change_due=co.compute_change(amount_paid, totals.total),
        phone_number=request.phone_number,
        notes=request.notes,
        items=[],
    )
    db.add(sale)
    for item in lines:
        await _deduct_line(db, organization, sale, item, request.location_id, member.id)

    if request.payment_method == "MPESA":
        client = mpesa_client or MpesaClient()
        try:
            push = await client.stk_push(
                phone=request.phone_number,
                amount=totals.total,
                account_reference=sale.sale_number,
                description=f"Sale {sale.sale_number}",
            )
        except MpesaError as e:
            session.fail(str(e))
            sale.status = co.FAILED
            sale.failure_reason = str(e)[:200]
            await restore_sale_stock(db, sale, member.id, "M-Pesa 发起失败，冲回库存")
            logger.warning(f"M-Pesa 发起失败 {sale.sale_number}: {e}")
            raise
        sale.checkout_request_id = push.checkout_request_id
    else:
        session.succeed()
        sale.status = co.SUCCESS
        sale.completed_at = datetime.utcnow()

    await create_audit_log(
        db,
        organization_id=organization.id,
        member_id=member.id,
        action="sale",
        resource_type="sale",
        resource_id=sale.id,
        resource_name=sale.sale_number,
        description=f"{request.payment_method} 收银 {sale.total} {sale.currency}",
        new_value={"status": sale.status, "total": str(sale.total), "items": len(sale.items)},
    )
    logger.info(f"收银: {sale.sale_number} {sale.payment_method} {sale.total} -> {sale.status}")
    return sale, session


async def apply_payment_result(db: AsyncSession, sale: Sale, result: Optional[CallbackResult],
                               reason: Optional[str] = None) -> Sale:
    """
    处理 M-Pesa 支付结果；result 为空表示超时/取消

    只结算 processing 状态的销售单：
    - 回调金额低于 STK 请求金额（应收四舍五入到整先令）按失败处理，冲回库存并标记待退款
    - 已失败的销售单又收到成功回调（取消/超时后客户仍付了款），保留收据号并标记待退款，库存不再扣回
    - 其余重复回调直接忽略
    """
    if sale.status != co.PROCESSING:
        if sale.status == co.FAILED and result is not None and result.success and not sale.mpesa_receipt:
            await _record_late_payment(db, sale, result)
        else:
            logger.info(f"销售单 {sale.sale_number} 已是 {sale.status}，忽略重复支付结果")
        return sale

    session = co.CheckoutSession(state=co.PROCESSING, payment_method=sale.payment_method)
    failure = None
    if result is not None and result.success:
        expected = whole_shillings(sale.total)
        if result.amount is not None and result.amount < expected:
            failure = f"金额不符：应付 {expected}，实付 {result.amount}"
            sale.mpesa_receipt = result.receipt
            sale.refund_due = True
            logger.warning(f"销售单 {sale.sale_number} {failure}，收据 {result.receipt}")
        else:
            session.succeed()
            sale.status = co.SUCCESS
            sale.mpesa_receipt = result.receipt
            if result.amount is not None:
                sale.amount_paid = result.amount
            sale.completed_at = datetime.utcnow()
    else:
        failure = reason or (result.result_desc if result else "支付超时")

    if failure is not None:
        session.fail(failure)
        sale.status = co.FAILED
        sale.failure_reason = failure[:200]
        await restore_sale_stock(db, sale, sale.member_id, f"M-Pesa 支付失败，冲回库存：{failure}")

    await create_audit_log(
        db,
        organization_id=sale.organization_id,
        member_id=None,
        action="update",
        resource_type="sale",
        resource_id=sale.id,
        resource_name=sale.sale_number,
        description=f"M-Pesa 支付结果：{sale.status}",
        old_value={"status": co.PROCESSING},
        new_value={"status": sale.status, "receipt": sale.mpesa_receipt, "reason": sale.failure_reason},
    )
    return sale


async def _record_late_payment(db: AsyncSession, sale: Sale, result: CallbackResult):
    sale.mpesa_receipt = result.receipt
    sale.refund_due = True
    logger.warning(
        f"销售单 {sale.sale_number} 已失败（{sale.failure_reason}）后收到 M-Pesa 付款 "
        f"{result.amount} 收据 {result.receipt}，需退款"
    )
    await create_audit_log(
        db,
        organization_id=sale.organization_id,
        member_id=None,
        action="update",
        resource_type="sale",
        resource_id=sale.id,
        resource_name=sale.sale_number,
        description="销售单失败后收到 M-Pesa 付款，待退款",
        old_value={"status": sale.status, "refund_due": False},
        new_value={
            "status": sale.status,
            "receipt": result.receipt,
            "amount": str(result.amount) if result.amount is not None else None,
            "refund_due": True,
        },
    )


async def get_sale_with_items(db: AsyncSession, sale_id: int, organization_id: int) -> Optional[Sale]:
    result = await db.execute(
        select(Sale)
        .options(selectinload(Sale.items), selectinload(Sale.customer), selectinload(Sale.member))
        .where(Sale.id == sale_id, Sale.organization_id == organization_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def expire_stale_checkouts(db: AsyncSession, older_than_minutes: int) -> int:
    """把超时未回调的 M-Pesa 销售单记为失败并冲回库存"""
    cutoff = datetime.utcnow() - timedelta(minutes=older_than_minutes)
    result = await db.execute(
        select(Sale).options(selectinload(Sale.items)).where(
            Sale.status == co.PROCESSING,
            Sale.payment_method == "MPESA",
            Sale.created_at < cutoff,
        )
    )
    sales = result.scalars().all()
    for sale in sales:
        await apply_payment_result(db, sale, None, reason="支付超时")
    return len(sales)


# ===== 退货 =====

async def returned_quantities(db: AsyncSession, sale_item_ids: List[int]) -> Dict[int, int]:
    """已退数量（待审批 + 已通过）"""
    if not sale_item_ids:
        return {}
    result = await db.execute(
        select(SaleReturnItem.sale_item_id, func.sum(SaleReturnItem.quantity))
        .join(SaleReturn)
        .where(
            SaleReturnItem.sale_item_id.in_(sale_item_ids),
            SaleReturn.status.in_(("PENDING", "APPROVED")),
        )
        .group_by(SaleReturnItem.sale_item_id)
    )
    return {item_id: int(qty or 0) for item_id, qty in result.all()}


async def create_return(db: AsyncSession, *, organization, member, payload) -> SaleReturn:
    sale = await get_sale_with_items(db, payload.sale_id, organization.id)
    if not sale:
        raise ReturnRejected("销售单不存在", status_code=404)
    if sale.status != co.SUCCESS:
        raise ReturnRejected("只有已完成的销售单可以退货")

    items_by_id = {item.id: item for item in sale.items}
    already = await returned_quantities(db, list(items_by_id))
    requested: Dict[int, int] = {}
    for line in payload.items:
        if line.sale_item_id not in items_by_id:
            raise ReturnRejected(f"销售明细不属于该销售单: {line.sale_item_id}")
        requested[line.sale_item_id] = requested.get(line.sale_item_id, 0) + line.quantity

    for item_id, quantity in requested.items():
        item = items_by_id[item_id]
        remaining = item.quantity - already.get(item_id, 0)
        if quantity > remaining:
            raise ReturnRejected(f"{item.product_name} 退货数量 {quantity} 超过可退数量 {remaining}")

    sale_return = SaleReturn(
        organization_id=organization.id,
        return_number=await generate_return_number(db, organization.id),
        sale_id=sale.id,
        status="PENDING",
        reason=payload.reason,
        notes=payload.notes,
        requested_by=member.id,
        items=[],
    )
    refund_total = Decimal("0")
    for line in payload.items:
        item = items_by_id[line.sale_item_id]
        refund = refund_line(sale, item, line.quantity)
        refund_total += refund
        sale_return.items.append(SaleReturnItem(
            sale_item_id=item.id,
            quantity=line.quantity,
            refund_amount=refund,
            restock=line.restock,
        ))
    sale_return.refund_amount = co.money(refund_total)
    db.add(sale_return)
    await db.flush()

    await create_audit_log(
        db,
        organization_id=organization.id,
        member_id=member.id,
        action="create",
        resource_type="return",
        resource_id=sale_return.id,
        resource_name=sale_return.return_number,
        description=f"退货申请 {sale.sale_number}，退款 {sale_return.refund_amount}",
    )
    return sale_return


def refund_line(sale: Sale, item: SaleItem, quantity: int) -> Decimal:
    """
    退款金额：按实付比例分摊折扣和税

    退款 = 明细单价 × 数量 × (应收 / 小计)
    """
    gross = item.unit_price * quantity
    if not sale.subtotal:
        return co.money(gross)
    return co.money(gross * sale.total / sale.subtotal)


async def approve_return(db: AsyncSession, sale_return: SaleReturn, member, notes: Optional[str] = None) -> SaleReturn:
    """审批通过：勾选入库的明细退回原批次"""
    if not sale_return.is_pending:
        raise ReturnRejected(f"退货单已是 {sale_return.status_display}，不能审批", status_code=409)

    for return_item in sale_return.items:
        if not return_item.restock:
            continue
        sale_item = return_item.sale_item
        if not sale_item.batch_id:
            continue
        batch = await db.get(StockBatch, sale_item.batch_id)
        before = batch.current_quantity
        batch.current_quantity = before + return_item.quantity
        batch.update_status()
        await apply_quantity_change(db, batch, before, batch.current_quantity)
        db.add(StockMovement(
            organization_id=sale_return.organization_id,
            batch_id=batch.id,
            product_id=sale_item.product_id,
            movement_type="RETURN",
            quantity=return_item.quantity,
            to_location_id=batch.location_id,
            to_position_id=batch.position_id,
            reference=sale_return.return_number,
            member_id=member.id,
        ))

    _decide(sale_return, "APPROVED", member, notes)
    await create_audit_log(
        db,
        organization_id=sale_return.organization_id,
        member_id=member.id,
        action="approve",
        resource_type="return",
        resource_id=sale_return.id,
        resource_name=sale_return.return_number,
        description=f"退货审批通过，退款 {sale_return.refund_amount}",
        old_value={"status": "PENDING"},
        new_value={"status": "APPROVED"},
    )
    return sale_return


async def reject_return(db: AsyncSession, sale_return: SaleReturn, member, notes: Optional[str] = None) -> SaleReturn:
    if not sale_return.is_pending:
        raise ReturnRejected(f"退货单已是 {sale_return.status_display}，不能驳回", status_code=409)
    _decide(sale_return, "REJECTED", member, notes)
    await create_audit_log(
        db,
        organization_id=sale_return.organization_id,
        member_id=member.id,
        action="reject",
        resource_type="return",
        resource_id=sale_return.id,
        resource_name=sale_return.return_number,
        description=f"退货驳回：{notes or ''}",
        old_value={"status": "PENDING"},
        new_value={"status": "REJECTED"},
    )
    return sale_return


def _decide(sale_return: SaleReturn, status: str, member, notes: Optional[str]):
    sale_return.status = status
    sale_return.decided_by = member.id
    sale_return.decided_at = datetime.utcnow()
    sale_return.decision_notes = notes

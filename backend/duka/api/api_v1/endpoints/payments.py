"""支付回调API - M-Pesa STK Push 结果"""

import logging
from typing import Any, Dict
from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from duka.core.deps import get_db
from duka.models.sale import Sale
from duka.services.mpesa import MpesaError, parse_callback
from duka.services.payment_notifier import payment_notifier
from duka.services.sales import apply_payment_result

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/mpesa/callback")
async def mpesa_callback(
    *,
    db: AsyncSession = Depends(get_db),
    payload: Dict[str, Any] = Body(...),
) -> Any:
    """M-Pesa 回调（由网关调用，不带组织请求头）"""
    try:
        result = parse_callback(payload)
    except MpesaError as e:
        logger.warning(f"M-Pesa 回调格式错误: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    sale = (await db.execute(
        select(Sale).options(selectinload(Sale.items))
        .where(Sale.checkout_request_id == result.checkout_request_id)
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()
    if not sale:
        logger.warning(f"M-Pesa 回调找不到销售单: {result.checkout_request_id}")
        # 网关只认 ResultCode，未知单据也要应答，避免重复推送
        return {"ResultCode": 0, "ResultDesc": "Accepted"}

    await apply_payment_result(db, sale, result)
    await db.commit()
    logger.info(f"M-Pesa 回调: {sale.sale_number} result={result.result_code} -> {sale.status}")

    payment_notifier.publish(result)
    return {"ResultCode": 0, "ResultDesc": "Accepted"}

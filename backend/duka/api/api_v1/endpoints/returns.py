"""退货审批API"""

from typing import Any
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from duka.core.deps import get_db, get_org_context, require_member, OrgContext
from duka.schemas.sale import ReturnDecision, ReturnResponse
from duka.services.sales import ReturnRejected, approve_return, reject_return
from duka.api.api_v1.endpoints.sales import build_return_response, load_return

router = APIRouter()


def check_approver(ctx: OrgContext):
    if not ctx.member.can_approve_returns:
        raise HTTPException(status_code=403, detail="只有店主或经理可以审批退货")


@router.get("/{return_id}", response_model=ReturnResponse)
async def get_return(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    return_id: int,
) -> Any:
    """获取退货单详情"""
    return build_return_response(await load_return(db, return_id, ctx.organization_id))


@router.post("/{return_id}/approve", response_model=ReturnResponse)
async def approve(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_member),
    return_id: int,
    decision: ReturnDecision,
) -> Any:
    """审批通过（勾选入库的明细退回原批次）"""
    check_approver(ctx)
    sale_return = await load_return(db, return_id, ctx.organization_id)
    try:
        await approve_return(db, sale_return, ctx.member, decision.notes)
    except ReturnRejected as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    await db.commit()
    return build_return_response(await load_return(db, return_id, ctx.organization_id))


@router.post("/{return_id}/reject", response_model=ReturnResponse)
async def reject(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_member),
    return_id: int,
    decision: ReturnDecision,
) -> Any:
    """驳回退货申请"""
    check_approver(ctx)
    sale_return = await load_return(db, return_id, ctx.organization_id)
    try:
        await reject_return(db, sale_return, ctx.member, decision.notes)
    except ReturnRejected as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    await db.commit()
    return build_return_response(await load_return(db, return_id, ctx.organization_id))

"""组织管理API - 创建组织、当前组织设置"""

from typing import Any
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from duka.core.config import settings
from duka.core.deps import get_db, get_org_context, OrgContext
from duka.models.organization import Organization, Member
from duka.schemas.organization import (
    OrganizationCreate, OrganizationResponse, OrganizationSettings, OrganizationSettingsUpdate
)
from duka.services.audit import create_audit_log

router = APIRouter()


def build_settings_response(org: Organization) -> OrganizationSettings:
    return OrganizationSettings(
        currency=org.currency,
        default_tax_rate=org.tax_rate_or(settings.DEFAULT_TAX_RATE),
        default_discount_rate=org.discount_rate_or(settings.DEFAULT_DISCOUNT_RATE),
        tax_rate_is_default=org.default_tax_rate is None,
        discount_rate_is_default=org.default_discount_rate is None,
        inventory_policy=org.inventory_policy,
        policy_display=org.policy_display,
        low_stock_threshold=org.low_stock_threshold,
        allow_negative_stock=org.allow_negative_stock,
    )


@router.post("/", response_model=OrganizationResponse)
async def create_organization(
    *,
    db: AsyncSession = Depends(get_db),
    org_in: OrganizationCreate,
) -> Any:
    """创建组织（同时创建店主成员）"""
    existing = await db.execute(select(Organization).where(Organization.slug == org_in.slug))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=400, detail="URL标识已被使用")

    org = Organization(
        name=org_in.name,
        slug=org_in.slug,
        currency=org_in.currency,
        low_stock_threshold=settings.DEFAULT_LOW_STOCK_THRESHOLD,
    )
    db.add(org)
    await db.flush()

    owner = Member(organization_id=org.id, name=org_in.owner_name, email=org_in.owner_email, role="owner")
    db.add(owner)
    await db.flush()

    await create_audit_log(
        db, organization_id=org.id, member_id=owner.id,
        action="create", resource_type="organization",
        resource_id=org.id, resource_name=org.name,
        description=f"创建组织：{org.name}",
    )
    await db.commit()
    await db.refresh(org)

    resp = OrganizationResponse.model_validate(org)
    resp.owner_member_id = owner.id
    return resp


@router.get("/current", response_model=OrganizationResponse)
async def get_current_organization(
    *,
    ctx: OrgContext = Depends(get_org_context),
) -> Any:
    """获取当前组织"""
    return OrganizationResponse.model_validate(ctx.organization)


@router.get("/current/settings", response_model=OrganizationSettings)
async def get_settings(
    *,
    ctx: OrgContext = Depends(get_org_context),
) -> Any:
    """获取组织设置（费率为生效值）"""
    return build_settings_response(ctx.organization)


@router.put("/current/settings", response_model=OrganizationSettings)
async def update_settings(
    *,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(get_org_context),
    settings_in: OrganizationSettingsUpdate,
) -> Any:
    """更新组织设置"""
    org = ctx.organization
    update_data = settings_in.model_dump(exclude_unset=True)
    old_value = {k: str(getattr(org, k)) for k in update_data}

    for field, value in update_data.items():
        if field in ("currency", "inventory_policy", "low_stock_threshold", "allow_negative_stock") and value is None:
            continue
        setattr(org, field, value.upper() if field == "currency" else value)

    await create_audit_log(
        db, organization_id=org.id, member_id=ctx.member_id,
        action="update", resource_type="organization",
        resource_id=org.id, resource_name=org.name,
        description="更新组织设置",
        old_value=old_value,
        new_value={k: str(getattr(org, k)) for k in update_data},
    )
    await db.commit()
    await db.refresh(org)
    return build_settings_response(org)

"""依赖注入 - 数据库会话与组织上下文（多租户，无认证）"""
from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from duka.db.session import SessionLocal
from duka.models.organization import Organization, Member


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    获取数据库会话依赖
    """
    async with SessionLocal() as session:
        yield session


class OrgContext:
    """当前请求的组织与操作人"""

    def __init__(self, organization: Organization, member: Optional[Member] = None):
        self.organization = organization
        self.member = member

    @property
    def organization_id(self) -> int:
        return self.organization.id

    @property
    def member_id(self) -> Optional[int]:
        return self.member.id if self.member else None


async def get_org_context(
    db: AsyncSession = Depends(get_db),
    x_organization_id: int = Header(..., alias="X-Organization-Id"),
    x_member_id: Optional[int] = Header(None, alias="X-Member-Id"),
) -> OrgContext:
    """
    从请求头解析组织上下文

    认证由上游网关负责，这里只校验组织与成员是否存在且匹配
    """
    organization = await db.get(Organization, x_organization_id)
    if not organization or not organization.is_active:
        raise HTTPException(status_code=404, detail="组织不存在或已停用")

    member = None
    if x_member_id is not None:
        member = await db.get(Member, x_member_id)
        if not member or member.organization_id != organization.id:
            raise HTTPException(status_code=403, detail="成员不属于当前组织")
        if not member.is_active:
            raise HTTPException(status_code=403, detail="成员已停用")

    return OrgContext(organization, member)


def require_member(ctx: OrgContext = Depends(get_org_context)) -> OrgContext:
    """需要明确操作人的接口（移库、收银、审批等）"""
    if ctx.member is None:
        raise HTTPException(status_code=400, detail="缺少操作人（X-Member-Id）")
    return ctx

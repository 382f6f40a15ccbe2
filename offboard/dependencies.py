from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from offboard.core.database import get_db
from offboard.core.tenant import TenantContext
from offboard.engine.dispatcher import Dispatcher, get_dispatcher

# Type aliases for dependency injection
DBSession = Annotated[AsyncSession, Depends(get_db)]


async def get_tenant_context(
    tenant_id: str | None = Header(default=None, alias="X-Tenant-Id"),
    session_id: str | None = Header(default=None, alias="X-Session-Id"),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
) -> TenantContext:
    """Tenant, session and actor as resolved by the upstream auth gateway.

    Raises 401 if any part is missing. Tenant identity is never taken from
    the request body.
    """
    if not tenant_id or not session_id or not actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return TenantContext(tenant_id=tenant_id, session_id=session_id, actor_id=actor_id)


Tenant = Annotated[TenantContext, Depends(get_tenant_context)]
DispatcherDep = Annotated[Dispatcher, Depends(get_dispatcher)]

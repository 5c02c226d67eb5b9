"""Escrow release endpoint for gosats, couriers and admins."""

from fastapi import APIRouter, Depends
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.bestowals_service.dependencies import (
    get_dispatcher,
    get_executor,
    require_roles,
)
from services.bestowals_service.models import AppRole
from services.bestowals_service.schemas import (
    EscrowReleaseRequest,
    EscrowReleaseResponse,
)
from services.bestowals_service.services.escrow import release_escrow
from services.bestowals_service.services.executor import DistributionExecutor
from services.bestowals_service.services.notifications import (
    NotificationDispatcher,
)
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/bestowals/escrow", tags=["escrow"])

_release_roles = require_roles(AppRole.GOSAT, AppRole.COURIER, AppRole.ADMIN)


@router.post(
    "/release",
    response_model=EscrowReleaseResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def release(
    payload: EscrowReleaseRequest,
    current_user: AuthUser = Depends(_release_roles),
    db: AsyncSession = Depends(get_async_db),
    executor: DistributionExecutor = Depends(get_executor),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Move a held bestowal's shares from pending to available balance."""
    return await release_escrow(
        db,
        request=payload,
        user=current_user,
        executor=executor,
        dispatcher=dispatcher,
    )

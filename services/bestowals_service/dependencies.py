"""FastAPI dependencies shared by the bestowals routers."""

from typing import Callable

from fastapi import Depends
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.bestowals_service.errors import AuthorizationError
from services.bestowals_service.messaging import ChatMessenger, get_messenger
from services.bestowals_service.models import AppRole, UserRole
from services.bestowals_service.providers import (
    ProviderClients,
    get_provider_clients,
)
from services.bestowals_service.services.executor import DistributionExecutor
from services.bestowals_service.services.notifications import (
    NotificationDispatcher,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


async def user_has_role(db: AsyncSession, user: AuthUser, *roles: AppRole) -> bool:
    """Service-role tokens pass every check."""
    if user.is_service_role:
        return True
    result = await db.execute(
        select(UserRole.id)
        .where(UserRole.user_id == user.user_id, UserRole.role.in_(roles))
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


def require_roles(*roles: AppRole) -> Callable:
    """Dependency allowing only users holding one of ``roles``."""

    async def _check(
        current_user: AuthUser = Depends(get_current_user),
        db: AsyncSession = Depends(get_async_db),
    ) -> AuthUser:
        if not await user_has_role(db, current_user, *roles):
            names = ", ".join(role.value for role in roles)
            raise AuthorizationError(f"Only {names} can perform this action")
        return current_user

    return _check


def get_executor(
    providers: ProviderClients = Depends(get_provider_clients),
) -> DistributionExecutor:
    return DistributionExecutor(providers)


def get_dispatcher(
    messenger: ChatMessenger = Depends(get_messenger),
) -> NotificationDispatcher:
    return NotificationDispatcher(messenger)

"""Bestowal order creation and read endpoints."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import Response
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.cache import Cache, get_cache
from libs.common.rate_limit import payment_limit
from libs.db.session import get_async_db
from services.bestowals_service.dependencies import user_has_role
from services.bestowals_service.errors import NotFoundError, ValidationError
from services.bestowals_service.models import AppRole, Bestowal
from services.bestowals_service.providers import (
    ProviderClients,
    get_provider_clients,
)
from services.bestowals_service.schemas import BestowalResponse
from services.bestowals_service.services.orders import create_bestowal_order
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/bestowals", tags=["bestowals"])


@router.post("/orders")
@payment_limit
async def create_order(
    request: Request,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    providers: ProviderClients = Depends(get_provider_clients),
    cache: Cache = Depends(get_cache),
    idempotency_key: Optional[str] = Header(default=None, alias="x-idempotency-key"),
):
    """
    Create a pending bestowal and open a checkout with the payment provider.

    The body is validated by the service so every violated field is reported
    together.
    """
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError(["body"], "Request body must be valid JSON")

    response_body = await create_bestowal_order(
        db,
        body=body,
        user=current_user,
        idempotency_key=idempotency_key,
        providers=providers,
        cache=cache,
    )
    return Response(content=response_body, media_type="application/json")


@router.get("/{bestowal_id}", response_model=BestowalResponse)
async def get_bestowal(
    bestowal_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Payment status and distribution snapshot, for the bestower or staff."""
    bestowal = await db.get(Bestowal, bestowal_id)
    if bestowal is None:
        raise NotFoundError("Bestowal not found")
    if bestowal.bestower_id != current_user.user_id and not await user_has_role(
        db, current_user, AppRole.GOSAT, AppRole.ADMIN
    ):
        # Hide other users' bestowals
        raise NotFoundError("Bestowal not found")
    return bestowal

"""Product purchase completion, called once the payment has settled."""

from fastapi import APIRouter, Depends
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.bestowals_service.dependencies import require_roles
from services.bestowals_service.models import AppRole
from services.bestowals_service.schemas import (
    CompleteProductBestowalRequest,
    CompleteProductBestowalResponse,
)
from services.bestowals_service.services.products import complete_product_bestowal
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/bestowals/products", tags=["products"])

_complete_roles = require_roles(AppRole.GOSAT, AppRole.ADMIN)


@router.post(
    "/complete",
    response_model=CompleteProductBestowalResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def complete(
    payload: CompleteProductBestowalRequest,
    current_user: AuthUser = Depends(_complete_roles),
    db: AsyncSession = Depends(get_async_db),
):
    """Credit a product purchase: digital pays out, physical is held."""
    return await complete_product_bestowal(db, request=payload, user=current_user)

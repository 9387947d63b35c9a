from fastapi import APIRouter, Depends, status, Query
from typing import Annotated
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.database import get_db
from app.core.dependencies.auth import get_current_actor_with_roles
from app.domain.payments.schemas import ExpiryStatsDTO
from app.services.payment_service import expire_pending_payments


router = APIRouter(prefix="/admin/maintenance", tags=["admin-maintenance"])
db_dependency = Annotated[AsyncSession, Depends(get_db)]


@router.post(
    "/expire-pending",
    status_code=status.HTTP_200_OK,
    response_model=ExpiryStatsDTO,
    dependencies=[Depends(get_current_actor_with_roles("ADMIN"))]
)
async def expire_pending(db: db_dependency, limit: int = Query(500, ge=1, le=5000)):
    stats = await expire_pending_payments(db, limit=limit)
    return ExpiryStatsDTO(
        payments_expired=stats.payments_expired,
        registrations_cancelled=stats.registrations_cancelled,
        seats_released=stats.seats_released,
    )

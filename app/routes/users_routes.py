from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from app.dependencies import get_db
from app.models.user_model import User
from app.schemas.base_schema import BloodType
from app.schemas.user_schema import (
    DonationHistoryItem,
    DonorSearchResponse,
    RequestHistoryItem,
    UserStats,
)
from app.services.user_service import UserService
from app.utils.logging_config import get_logger
from app.utils.security import get_current_user

logger = get_logger(__name__)

router = APIRouter(
    prefix="/users",
    tags=["users"]
)


def _internal_error(action: str, e: Exception, user: User) -> HTTPException:
    logger.error(
        f"Failed to {action}: {e}",
        extra={"event_type": "user_view_error", "current_user_id": str(user.id)},
        exc_info=True,
    )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal server error",
    )


@router.get("/donors", response_model=DonorSearchResponse)
async def search_donors(
    blood_group: BloodType = Query(..., description="Recipient blood group"),
    longitude: float = Query(..., ge=-180, le=180),
    latitude: float = Query(..., ge=-90, le=90),
    distance: Optional[float] = Query(None, gt=0, le=500, description="Search radius in km"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Eligible donors who can give to ``blood_group`` near a point, nearest first"""
    try:
        return await UserService(db).find_nearby_donors(
            blood_group=BloodType(blood_group).value,
            longitude=longitude,
            latitude=latitude,
            distance_km=distance,
            exclude_user_id=current_user.id,
        )
    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error("search donors", e, current_user)


@router.get("/donation-history", response_model=List[DonationHistoryItem])
async def get_donation_history(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return await UserService(db).donation_history(current_user.id)
    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error("load donation history", e, current_user)


@router.get("/request-history", response_model=List[RequestHistoryItem])
async def get_request_history(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return await UserService(db).request_history(current_user.id)
    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error("load request history", e, current_user)


@router.get("/stats", response_model=UserStats)
async def get_user_stats(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Donation and request counts plus the caller's current eligibility"""
    try:
        return await UserService(db).get_stats(current_user.id)
    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error("load user stats", e, current_user)

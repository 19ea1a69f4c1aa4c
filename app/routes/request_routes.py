from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID
from typing import Optional
from app.dependencies import get_db, get_notifier
from app.models.user_model import User
from app.schemas.base_schema import BloodType
from app.schemas.request_schema import (
    BloodRequestCreate,
    BloodRequestUpdate,
    BloodRequestResponse,
    BloodRequestCreateResponse,
    BloodRequestActionResponse,
    DonorResponse,
    DonorResponseCreate,
    DonationComplete,
    RequestStatus,
)
from app.services.notification_service import NotificationDispatcher
from app.services.request_service import BloodRequestService
from app.utils.logging_config import get_logger, log_audit_event
from app.utils.pagination import PaginatedResponse, PaginationParams, get_pagination_params
from app.utils.security import get_current_user

logger = get_logger(__name__)

router = APIRouter(
    prefix="/requests",
    tags=["requests"]
)


def get_request_service(
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> BloodRequestService:
    return BloodRequestService(db, notifier)


def _internal_error(action: str, e: Exception, **context) -> HTTPException:
    logger.error(
        f"Blood request {action} failed due to unexpected error: {e}",
        extra={"event_type": f"blood_request_{action}_error", **context},
        exc_info=True,
    )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal server error",
    )


@router.post(
    "/",
    response_model=BloodRequestCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_blood_request(
    request_data: BloodRequestCreate,
    service: BloodRequestService = Depends(get_request_service),
    current_user: User = Depends(get_current_user),
):
    """Create a blood request and notify nearby compatible donors"""
    current_user_id = str(current_user.id)
    logger.info(
        "Blood request creation started",
        extra={
            "event_type": "blood_request_creation_attempt",
            "current_user_id": current_user_id,
            "blood_group": request_data.blood_group,
            "units": request_data.units,
            "urgency": request_data.urgency,
        },
    )

    try:
        blood_request, potential_donors = await service.create_request(
            current_user.id, request_data
        )

        log_audit_event(
            action="create",
            resource_type="blood_request",
            resource_id=str(blood_request.id),
            new_values={
                "blood_group": request_data.blood_group,
                "units": request_data.units,
                "urgency": request_data.urgency,
                "potential_donors": potential_donors,
            },
            user_id=current_user_id,
        )

        return BloodRequestCreateResponse(
            request=BloodRequestResponse.from_model(blood_request),
            potential_donors_count=potential_donors,
            message="Blood request created successfully",
        )

    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error("creation", e, current_user_id=current_user_id)


@router.get("/", response_model=PaginatedResponse[BloodRequestResponse])
async def list_blood_requests(
    request_status: Optional[RequestStatus] = Query(None, alias="status"),
    blood_group: Optional[BloodType] = Query(None),
    longitude: Optional[float] = Query(None, ge=-180, le=180),
    latitude: Optional[float] = Query(None, ge=-90, le=90),
    radius_km: Optional[float] = Query(None, gt=0, le=500),
    pagination: PaginationParams = Depends(get_pagination_params),
    service: BloodRequestService = Depends(get_request_service),
    current_user: User = Depends(get_current_user),
):
    """List requests. With longitude/latitude the results are nearest first."""
    try:
        rows, total = await service.list_requests(
            pagination,
            status=request_status,
            blood_group=BloodType(blood_group).value if blood_group else None,
            longitude=longitude,
            latitude=latitude,
            radius_km=radius_km,
        )
        return PaginatedResponse.build(
            [BloodRequestResponse.from_model(row, distance) for row, distance in rows],
            total,
            pagination,
        )

    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error("listing", e, current_user_id=str(current_user.id))


@router.get("/{request_id}", response_model=BloodRequestResponse)
async def get_blood_request(
    request_id: UUID,
    service: BloodRequestService = Depends(get_request_service),
    current_user: User = Depends(get_current_user),
):
    try:
        blood_request = await service.get_request(request_id)
        return BloodRequestResponse.from_model(blood_request)

    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error("retrieval", e, request_id=str(request_id))


@router.put("/{request_id}", response_model=BloodRequestResponse)
async def update_blood_request(
    request_id: UUID,
    update_data: BloodRequestUpdate,
    service: BloodRequestService = Depends(get_request_service),
    current_user: User = Depends(get_current_user),
):
    """Edit an active request. Only the requester may edit."""
    current_user_id = str(current_user.id)
    try:
        blood_request = await service.update_request(
            request_id, current_user.id, update_data
        )

        log_audit_event(
            action="update",
            resource_type="blood_request",
            resource_id=str(request_id),
            new_values=update_data.model_dump(exclude_unset=True, mode="json"),
            user_id=current_user_id,
        )
        return BloodRequestResponse.from_model(blood_request)

    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error("update", e, request_id=str(request_id))


@router.put("/{request_id}/cancel", response_model=BloodRequestActionResponse)
async def cancel_blood_request(
    request_id: UUID,
    service: BloodRequestService = Depends(get_request_service),
    current_user: User = Depends(get_current_user),
):
    current_user_id = str(current_user.id)
    try:
        blood_request = await service.cancel_request(request_id, current_user.id)

        log_audit_event(
            action="cancel",
            resource_type="blood_request",
            resource_id=str(request_id),
            old_values={"status": RequestStatus.ACTIVE.value},
            new_values={"status": RequestStatus.CANCELLED.value},
            user_id=current_user_id,
        )
        return BloodRequestActionResponse(
            id=blood_request.id,
            status=blood_request.status,
            message="Blood request cancelled successfully",
        )

    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error("cancellation", e, request_id=str(request_id))


@router.post("/{request_id}/respond", response_model=BloodRequestActionResponse)
async def respond_to_blood_request(
    request_id: UUID,
    payload: DonorResponseCreate,
    service: BloodRequestService = Depends(get_request_service),
    current_user: User = Depends(get_current_user),
):
    """Accept or decline a request as a donor"""
    current_user_id = str(current_user.id)
    try:
        blood_request = await service.respond_to_request(
            request_id, current_user.id, payload.response
        )

        log_audit_event(
            action="respond",
            resource_type="blood_request",
            resource_id=str(request_id),
            new_values={"response": payload.response, "status": blood_request.status},
            user_id=current_user_id,
        )
        return BloodRequestActionResponse(
            id=blood_request.id,
            status=blood_request.status,
            message=f"Successfully {DonorResponse(payload.response).donor_status.value} the blood request",
        )

    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error("response", e, request_id=str(request_id))


@router.put("/{request_id}/complete", response_model=BloodRequestActionResponse)
async def complete_donation(
    request_id: UUID,
    payload: DonationComplete,
    service: BloodRequestService = Depends(get_request_service),
    current_user: User = Depends(get_current_user),
):
    """Mark an accepted donor's donation as completed. Only the requester may do this."""
    current_user_id = str(current_user.id)
    try:
        blood_request = await service.complete_donation(
            request_id, current_user.id, payload.donor_id
        )

        log_audit_event(
            action="complete_donation",
            resource_type="blood_request",
            resource_id=str(request_id),
            new_values={"donor_id": str(payload.donor_id), "status": blood_request.status},
            user_id=current_user_id,
        )
        return BloodRequestActionResponse(
            id=blood_request.id,
            status=blood_request.status,
            message="Donation marked as completed successfully",
        )

    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error("completion", e, request_id=str(request_id))

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy import func, update
from uuid import UUID, uuid4
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar
import logging

from app.config import settings
from app.db.base import utcnow
from app.models.request_model import BloodRequest
from app.models.user_model import User, DonationRecord, RequestHistoryEntry
from app.schemas.request_schema import (
    BloodRequestCreate,
    BloodRequestUpdate,
    DonorResponse,
    Gender,
    RequestStatus,
    Urgency,
)
from app.services import request_lifecycle as lifecycle
from app.services.donor_locator import (
    distance_km,
    find_candidate_donors,
    radius_for,
    request_box_filter,
)
from app.services.notification_service import NotificationDispatcher
from app.utils.exceptions import (
    AuthorizationError,
    EligibilityError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from app.utils.pagination import PaginationParams
from app.utils.performance_monitor import performance_monitor

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BloodRequestService:
    """Create, read and move blood requests through their lifecycle.

    Writes to a request go through ``_apply``: the request row carries a
    version counter, so a commit that races another writer fails with
    ``StaleDataError`` and the whole operation is re-run on fresh state.
    Notifications are sent only after a successful commit.
    """

    def __init__(self, db: AsyncSession, notifier: Optional[NotificationDispatcher] = None):
        self.db = db
        self.notifier = notifier

    # --- Loading ---

    async def _load_request(self, request_id: UUID) -> BloodRequest:
        """Fresh read of a request and its donor entries, overwriting cached state"""
        query = (
            select(BloodRequest)
            .options(selectinload(BloodRequest.donors))
            .where(BloodRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        blood_request = result.scalar_one_or_none()
        if blood_request is None:
            raise NotFoundError("Blood request not found")
        return blood_request

    async def _get_user(self, user_id: UUID, what: str = "User") -> User:
        user = await self.db.get(User, user_id, populate_existing=True)
        if user is None:
            raise NotFoundError(f"{what} not found")
        return user

    # --- Notifications ---

    async def _notify(self, method: str, *args) -> None:
        if self.notifier is None:
            return
        try:
            await getattr(self.notifier, method)(*args)
        except Exception as e:
            logger.error(
                f"Notification {method} failed: {e}",
                extra={"event_type": "notification_failed"},
            )

    # --- Expiry ---

    async def _expire_due(self, request_ids: Optional[List[UUID]] = None) -> List[UUID]:
        """Flip due active requests to expired with a conditional UPDATE.

        The status guard in the WHERE clause makes this safe to race: only one
        caller sees rowcount 1 for a given request, and only that caller
        announces the change. The version bump invalidates any writer that
        loaded the request before the flip.
        """
        now = utcnow()
        due_query = select(BloodRequest.id).where(
            BloodRequest.status == RequestStatus.ACTIVE,
            BloodRequest.expires_at <= now,
        )
        if request_ids is not None:
            due_query = due_query.where(BloodRequest.id.in_(request_ids))
        due_ids = (await self.db.execute(due_query)).scalars().all()

        expired = []
        for request_id in due_ids:
            result = await self.db.execute(
                update(BloodRequest)
                .where(
                    BloodRequest.id == request_id,
                    BloodRequest.status == RequestStatus.ACTIVE,
                )
                .values(
                    status=RequestStatus.EXPIRED,
                    updated_at=now,
                    version=BloodRequest.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                expired.append(request_id)

        if not due_ids:
            return expired

        await self.db.commit()
        for request_id in expired:
            logger.info(f"Blood request {request_id} expired")
            blood_request = await self._load_request(request_id)
            await self._notify("notify_status_changed", blood_request, RequestStatus.ACTIVE.value)
        return expired

    # --- Versioned writes ---

    async def _apply(
        self,
        request_id: UUID,
        action: str,
        operation: Callable[[BloodRequest], Awaitable[T]],
        owner_id: Optional[UUID] = None,
    ) -> Tuple[BloodRequest, T]:
        """Load, check ownership, lazily expire, run ``operation`` and commit.

        Retries on concurrent modification up to REQUEST_UPDATE_MAX_RETRIES
        attempts. Errors raised by ``operation`` propagate untouched.
        """
        max_attempts = max(1, settings.REQUEST_UPDATE_MAX_RETRIES)

        for attempt in range(1, max_attempts + 1):
            blood_request = await self._load_request(request_id)

            if owner_id is not None and blood_request.requester_id != owner_id:
                raise AuthorizationError(f"Not authorized to {action} this request")

            try:
                if lifecycle.refresh_expiry(blood_request):
                    await self.db.commit()
                    await self._notify(
                        "notify_status_changed", blood_request, RequestStatus.ACTIVE.value
                    )
                    raise StateConflictError(f"Cannot {action} an expired request")

                outcome = await operation(blood_request)
                await self.db.commit()
                return blood_request, outcome

            except StaleDataError:
                await self.db.rollback()
                logger.warning(
                    f"Concurrent update on blood request {request_id} while trying to "
                    f"{action} (attempt {attempt}/{max_attempts})",
                    extra={"event_type": "request_version_conflict"},
                )

        raise StateConflictError(
            "Blood request was modified concurrently, please retry"
        )

    # --- Operations ---

    @performance_monitor
    async def create_request(
        self, requester_id: UUID, request_data: BloodRequestCreate
    ) -> Tuple[BloodRequest, int]:
        """Persist a request, snapshot the donors to notify and notify them.

        Returns the request and the number of potential donors found.
        """
        await self._get_user(requester_id, "Requester")
        now = utcnow()
        hospital = request_data.hospital
        location = hospital.location

        blood_request = BloodRequest(
            id=uuid4(),
            requester_id=requester_id,
            patient_name=request_data.patient.name,
            patient_age=request_data.patient.age,
            patient_gender=Gender(request_data.patient.gender),
            blood_group=request_data.blood_group,
            units=request_data.units,
            urgency=Urgency(request_data.urgency),
            hospital_name=hospital.name,
            hospital_address=location.address,
            hospital_longitude=location.longitude,
            hospital_latitude=location.latitude,
            reason=request_data.reason,
            additional_notes=request_data.additional_notes or "",
            status=RequestStatus.ACTIVE,
            notified_donors=[],
            expires_at=lifecycle.expiry_for(request_data.urgency, now),
            created_at=now,
            updated_at=now,
        )
        self.db.add(blood_request)

        matches = await find_candidate_donors(
            self.db,
            blood_group=request_data.blood_group,
            longitude=location.longitude,
            latitude=location.latitude,
            radius_km=radius_for(request_data.urgency),
            exclude_user_id=requester_id,
        )
        donor_ids = [match.donor.id for match in matches]
        blood_request.notified_donors = [str(donor_id) for donor_id in donor_ids]

        self.db.add(
            RequestHistoryEntry(
                user_id=requester_id,
                request_id=blood_request.id,
                status=RequestStatus.ACTIVE.value,
                recorded_at=now,
            )
        )
        await self.db.commit()
        blood_request = await self._load_request(blood_request.id)

        logger.info(
            f"Blood request {blood_request.id} created for {blood_request.blood_group} "
            f"({blood_request.units} units, {blood_request.urgency}), "
            f"{len(donor_ids)} donors notified",
            extra={"event_type": "blood_request_created", "request_id": str(blood_request.id)},
        )

        await self._notify("notify_new_blood_request", blood_request, donor_ids)
        return blood_request, len(donor_ids)

    async def get_request(self, request_id: UUID) -> BloodRequest:
        blood_request = await self._load_request(request_id)
        if blood_request.is_active and blood_request.is_past_expiry():
            await self._expire_due([request_id])
            blood_request = await self._load_request(request_id)
        return blood_request

    @performance_monitor
    async def list_requests(
        self,
        pagination: PaginationParams,
        status: Optional[RequestStatus] = None,
        blood_group: Optional[str] = None,
        longitude: Optional[float] = None,
        latitude: Optional[float] = None,
        radius_km: Optional[float] = None,
    ) -> Tuple[List[Tuple[BloodRequest, Optional[float]]], int]:
        """Filtered page of requests with their distance from the search point.

        Filters combine with AND. With a point, results within ``radius_km``
        come nearest first; otherwise newest first.
        """
        near = [value is not None for value in (longitude, latitude)]
        if any(near) and not all(near):
            raise ValidationError("Both longitude and latitude are required to search near a point")
        if radius_km is not None and radius_km <= 0:
            raise ValidationError("radius_km must be positive")

        await self._expire_due()

        conditions = []
        if status is not None:
            conditions.append(BloodRequest.status == RequestStatus(status))
        if blood_group is not None:
            conditions.append(BloodRequest.blood_group == blood_group)

        base_query = (
            select(BloodRequest)
            .options(selectinload(BloodRequest.donors))
            .where(*conditions)
            .execution_options(populate_existing=True)
        )

        if all(near):
            radius = radius_km if radius_km is not None else settings.DONOR_SEARCH_DEFAULT_KM
            result = await self.db.execute(
                base_query.where(request_box_filter(BloodRequest, longitude, latitude, radius))
            )
            located = []
            for blood_request in result.scalars().all():
                distance = distance_km(
                    longitude,
                    latitude,
                    blood_request.hospital_longitude,
                    blood_request.hospital_latitude,
                )
                if distance <= radius:
                    located.append((blood_request, round(distance, 3)))
            located.sort(key=lambda item: item[1])
            page = located[pagination.offset : pagination.offset + pagination.page_size]
            return page, len(located)

        count_result = await self.db.execute(
            select(func.count(BloodRequest.id)).where(*conditions)
        )
        total = count_result.scalar() or 0
        result = await self.db.execute(
            base_query.order_by(BloodRequest.created_at.desc())
            .offset(pagination.offset)
            .limit(pagination.page_size)
        )
        return [(blood_request, None) for blood_request in result.scalars().all()], total

    async def update_request(
        self, request_id: UUID, requester_id: UUID, update_data: BloodRequestUpdate
    ) -> BloodRequest:
        changes = update_data.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            raise ValidationError("No fields to update")

        async def operation(blood_request: BloodRequest) -> Tuple[str, bool]:
            old_status = RequestStatus(blood_request.status).value
            return old_status, lifecycle.apply_edit(blood_request, changes)

        blood_request, (old_status, fulfilled) = await self._apply(
            request_id, "edit", operation, owner_id=requester_id
        )
        logger.info(
            f"Blood request {request_id} updated: {', '.join(sorted(changes))}",
            extra={"event_type": "blood_request_updated", "request_id": str(request_id)},
        )
        if fulfilled:
            await self._notify("notify_status_changed", blood_request, old_status)
        return blood_request

    async def cancel_request(self, request_id: UUID, requester_id: UUID) -> BloodRequest:
        async def operation(blood_request: BloodRequest) -> None:
            lifecycle.cancel(blood_request)
            self.db.add(
                RequestHistoryEntry(
                    user_id=blood_request.requester_id,
                    request_id=blood_request.id,
                    status=RequestStatus.CANCELLED.value,
                )
            )

        blood_request, _ = await self._apply(
            request_id, "cancel", operation, owner_id=requester_id
        )
        logger.info(
            f"Blood request {request_id} cancelled",
            extra={"event_type": "blood_request_cancelled", "request_id": str(request_id)},
        )
        await self._notify("notify_request_cancelled", blood_request)
        return blood_request

    async def respond_to_request(
        self, request_id: UUID, donor_id: UUID, response: DonorResponse
    ) -> BloodRequest:
        """Record a donor's accept or decline; the last answer wins."""
        response = DonorResponse(response)

        async def operation(blood_request: BloodRequest) -> bool:
            lifecycle.ensure_active(blood_request, "respond to")

            donor = await self._get_user(donor_id, "Donor")
            if not donor.is_donor:
                raise AuthorizationError("Only registered donors can respond to requests")
            if donor.id == blood_request.requester_id:
                raise AuthorizationError("Requesters cannot respond to their own request")
            if response is DonorResponse.ACCEPT and not donor.is_eligible_to_donate:
                raise EligibilityError(
                    f"Donor is not eligible to donate for another "
                    f"{donor.days_until_eligible} days"
                )

            _, fulfilled = lifecycle.record_response(blood_request, donor_id, response)
            return fulfilled

        blood_request, fulfilled = await self._apply(request_id, "respond to", operation)
        logger.info(
            f"Donor {donor_id} responded {response.value} to blood request {request_id}",
            extra={"event_type": "donor_responded", "request_id": str(request_id)},
        )

        await self._notify("notify_donor_response", blood_request, donor_id, response.value)
        if fulfilled:
            await self._notify(
                "notify_status_changed", blood_request, RequestStatus.ACTIVE.value
            )
        return blood_request

    async def complete_donation(
        self, request_id: UUID, requester_id: UUID, donor_id: UUID
    ) -> BloodRequest:
        """Mark an accepted donor's donation as done and record it in both histories."""

        async def operation(blood_request: BloodRequest) -> Tuple[str, bool]:
            old_status = RequestStatus(blood_request.status).value
            entry, fulfilled = lifecycle.record_completion(blood_request, donor_id)

            donor = await self._get_user(donor_id, "Donor")
            donor.last_donation = entry.completed_at
            self.db.add(
                DonationRecord(
                    donor_id=donor_id,
                    request_id=blood_request.id,
                    recipient_id=blood_request.requester_id,
                    donated_at=entry.completed_at,
                )
            )
            self.db.add(
                RequestHistoryEntry(
                    user_id=blood_request.requester_id,
                    request_id=blood_request.id,
                    status=RequestStatus(blood_request.status).value,
                    recorded_at=entry.completed_at,
                )
            )
            return old_status, fulfilled

        blood_request, (old_status, fulfilled) = await self._apply(
            request_id, "complete a donation on", operation, owner_id=requester_id
        )
        logger.info(
            f"Donation by {donor_id} completed for blood request {request_id}",
            extra={"event_type": "donation_completed", "request_id": str(request_id)},
        )
        if fulfilled:
            await self._notify("notify_status_changed", blood_request, old_status)
        return blood_request

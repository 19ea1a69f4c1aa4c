import logging
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
from sqlalchemy import func
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from app.config import settings
from app.db.base import as_utc, utcnow
from app.models.request_model import BloodRequest
from app.models.user_model import User, DonationRecord, RequestHistoryEntry
from app.schemas.request_schema import RequestStatus
from app.schemas.user_schema import (
    DonationHistoryItem,
    DonorSearchResponse,
    DonorSummary,
    RequestHistoryItem,
    UserStats,
)
from app.services.compatibility import get_compatible_donor_groups, get_recipient_groups
from app.services.donor_locator import find_candidate_donors
from app.services.eligibility import days_until_eligible, is_eligible
from app.utils.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = 365


class UserService:
    """Read-side views of a user: nearby donors, histories and donation stats"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_user(self, user_id: UUID) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def find_nearby_donors(
        self,
        blood_group: str,
        longitude: float,
        latitude: float,
        distance_km: Optional[float] = None,
        exclude_user_id: Optional[UUID] = None,
    ) -> DonorSearchResponse:
        """Eligible donors compatible with ``blood_group`` near a point, nearest first"""
        radius = distance_km if distance_km is not None else settings.DONOR_SEARCH_DEFAULT_KM
        if radius <= 0:
            raise ValidationError("distance must be positive")

        matches = await find_candidate_donors(
            self.db,
            blood_group=blood_group,
            longitude=longitude,
            latitude=latitude,
            radius_km=radius,
            exclude_user_id=exclude_user_id,
        )
        return DonorSearchResponse(
            blood_group=blood_group,
            compatible_groups=sorted(get_compatible_donor_groups(blood_group)),
            radius_km=radius,
            donors=[
                DonorSummary(
                    id=match.donor.id,
                    name=match.donor.name,
                    blood_group=match.donor.blood_group,
                    phone=match.donor.phone,
                    address=match.donor.address,
                    longitude=match.donor.longitude,
                    latitude=match.donor.latitude,
                    last_donation=match.donor.last_donation,
                    distance_km=match.distance_km,
                )
                for match in matches
            ],
        )

    async def donation_history(self, user_id: UUID) -> List[DonationHistoryItem]:
        await self._get_user(user_id)
        result = await self.db.execute(
            select(DonationRecord, BloodRequest, User)
            .join(BloodRequest, DonationRecord.request_id == BloodRequest.id)
            .join(User, DonationRecord.recipient_id == User.id)
            .where(DonationRecord.donor_id == user_id)
            .order_by(DonationRecord.donated_at.desc(), DonationRecord.id.desc())
        )
        return [
            DonationHistoryItem(
                request_id=record.request_id,
                recipient_id=record.recipient_id,
                recipient_name=recipient.name,
                hospital_name=blood_request.hospital_name,
                blood_group=blood_request.blood_group,
                donated_at=record.donated_at,
            )
            for record, blood_request, recipient in result.all()
        ]

    async def request_history(self, user_id: UUID) -> List[RequestHistoryItem]:
        await self._get_user(user_id)
        result = await self.db.execute(
            select(RequestHistoryEntry)
            .options(selectinload(RequestHistoryEntry.request))
            .where(RequestHistoryEntry.user_id == user_id)
            .order_by(RequestHistoryEntry.recorded_at.desc(), RequestHistoryEntry.id.desc())
        )
        items = []
        for entry in result.scalars().all():
            blood_request = entry.request
            items.append(
                RequestHistoryItem(
                    request_id=entry.request_id,
                    status=entry.status,
                    current_status=(
                        RequestStatus(blood_request.status).value if blood_request else None
                    ),
                    blood_group=blood_request.blood_group if blood_request else None,
                    units=blood_request.units if blood_request else None,
                    hospital_name=blood_request.hospital_name if blood_request else None,
                    recorded_at=entry.recorded_at,
                )
            )
        return items

    async def get_stats(self, user_id: UUID, now: Optional[datetime] = None) -> UserStats:
        now = now or utcnow()
        user = await self._get_user(user_id)

        donation_result = await self.db.execute(
            select(func.count(DonationRecord.id), func.min(DonationRecord.donated_at)).where(
                DonationRecord.donor_id == user_id
            )
        )
        donation_count, first_donation = donation_result.one()

        request_result = await self.db.execute(
            select(BloodRequest.status, func.count(BloodRequest.id))
            .where(BloodRequest.requester_id == user_id)
            .group_by(BloodRequest.status)
        )
        per_status = {RequestStatus(status): count for status, count in request_result.all()}

        return UserStats(
            donation_count=donation_count,
            request_count=sum(per_status.values()),
            successful_request_count=per_status.get(RequestStatus.FULFILLED, 0),
            donation_frequency=self._donation_frequency(donation_count, first_donation, now),
            is_eligible=is_eligible(user.last_donation, now),
            days_until_eligible=days_until_eligible(user.last_donation, now),
            last_donation=user.last_donation,
            can_donate_to=get_recipient_groups(user.blood_group),
        )

    @staticmethod
    def _donation_frequency(
        donation_count: int, first_donation: Optional[datetime], now: datetime
    ) -> float:
        """Donations per year; under a year of history counts as one year"""
        if not donation_count or first_donation is None:
            return 0.0
        years = (now - as_utc(first_donation)).total_seconds() / (DAYS_PER_YEAR * 86400)
        if years < 1:
            return float(donation_count)
        return round(donation_count / years, 2)

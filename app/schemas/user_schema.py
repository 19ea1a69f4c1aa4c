from datetime import datetime
from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field


class DonorSummary(BaseModel):
    """A donor found near a point"""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    blood_group: str
    phone: Optional[str] = None
    address: Optional[str] = None
    longitude: float
    latitude: float
    last_donation: Optional[datetime] = None
    distance_km: float = Field(..., description="Geodesic distance from the search point")


class DonorSearchResponse(BaseModel):
    blood_group: str
    compatible_groups: List[str]
    radius_km: float
    donors: List[DonorSummary]


class DonationHistoryItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    request_id: UUID
    recipient_id: UUID
    recipient_name: Optional[str] = None
    hospital_name: Optional[str] = None
    blood_group: Optional[str] = None
    donated_at: datetime


class RequestHistoryItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    request_id: UUID
    status: str = Field(..., description="Request status when the entry was recorded")
    current_status: Optional[str] = None
    blood_group: Optional[str] = None
    units: Optional[int] = None
    hospital_name: Optional[str] = None
    recorded_at: datetime


class UserStats(BaseModel):
    donation_count: int
    request_count: int
    successful_request_count: int
    donation_frequency: float = Field(
        ..., description="Donations per year since the first recorded donation"
    )
    is_eligible: bool
    days_until_eligible: int
    last_donation: Optional[datetime] = None
    can_donate_to: List[str] = []

from pydantic import BaseModel, Field, ConfigDict, StringConstraints, model_validator
from uuid import UUID
from datetime import datetime
from enum import Enum
from typing import List, Optional, Annotated
import logging

from app.db.base import as_utc
from app.schemas.base_schema import BaseSchema, BloodType

logger = logging.getLogger(__name__)


class RequestStatus(str, Enum):

    ACTIVE = "active"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class Urgency(str, Enum):

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class DonorStatus(str, Enum):

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    COMPLETED = "completed"


class DonorResponse(str, Enum):
    """What a donor answers to a request"""

    ACCEPT = "accept"
    DECLINE = "decline"

    @property
    def donor_status(self) -> DonorStatus:
        return DonorStatus.ACCEPTED if self is DonorResponse.ACCEPT else DonorStatus.DECLINED


class Gender(str, Enum):

    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


# --- Nested payloads ---


class PatientSchema(BaseSchema):
    name: Annotated[
        str, StringConstraints(min_length=1, max_length=100, strip_whitespace=True)
    ]
    age: int = Field(..., ge=0, le=120, description="Patient age in years")
    gender: Gender


class GeoPoint(BaseSchema):
    """GeoJSON-style point: coordinates are [longitude, latitude]"""

    type: str = Field(default="Point", pattern=r"^Point$")
    coordinates: List[float] = Field(..., min_length=2, max_length=2)

    @model_validator(mode="after")
    def validate_ranges(self):
        longitude, latitude = self.coordinates
        if not -180 <= longitude <= 180:
            raise ValueError("Longitude must be between -180 and 180")
        if not -90 <= latitude <= 90:
            raise ValueError("Latitude must be between -90 and 90")
        return self

    @property
    def longitude(self) -> float:
        return self.coordinates[0]

    @property
    def latitude(self) -> float:
        return self.coordinates[1]


class HospitalLocation(GeoPoint):
    address: Annotated[
        str, StringConstraints(min_length=1, max_length=255, strip_whitespace=True)
    ]


class HospitalSchema(BaseSchema):
    name: Annotated[
        str, StringConstraints(min_length=1, max_length=150, strip_whitespace=True)
    ]
    location: HospitalLocation


# --- Requests in ---


class BloodRequestCreate(BaseSchema):
    patient: PatientSchema
    blood_group: BloodType = Field(..., description="Recipient blood group")
    units: int = Field(..., ge=1, le=10, description="Units needed (1-10)")
    urgency: Urgency = Field(default=Urgency.MEDIUM)
    hospital: HospitalSchema
    reason: Annotated[
        str, StringConstraints(min_length=1, max_length=500, strip_whitespace=True)
    ]
    additional_notes: Optional[Annotated[str, StringConstraints(max_length=1000)]] = ""


class BloodRequestUpdate(BaseSchema):
    patient: Optional[PatientSchema] = None
    blood_group: Optional[BloodType] = None
    units: Optional[int] = Field(None, ge=1, le=10)
    urgency: Optional[Urgency] = None
    hospital: Optional[HospitalSchema] = None
    reason: Optional[
        Annotated[str, StringConstraints(min_length=1, max_length=500)]
    ] = None
    additional_notes: Optional[Annotated[str, StringConstraints(max_length=1000)]] = None


class DonorResponseCreate(BaseSchema):
    response: DonorResponse


class DonationComplete(BaseSchema):
    donor_id: UUID


# --- Responses out ---


class DonorEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    donor_id: UUID
    status: DonorStatus
    responded_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class BloodRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    requester_id: UUID
    patient: PatientSchema
    blood_group: str
    units: int
    urgency: Urgency
    hospital: HospitalSchema
    reason: str
    additional_notes: Optional[str] = None
    status: RequestStatus
    donors: List[DonorEntryResponse] = []
    notified_donors_count: int = 0
    accepted_count: int = 0
    completed_count: int = 0
    expires_at: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    distance_km: Optional[float] = Field(
        None, description="Distance from the search point, when searching near a location"
    )

    @classmethod
    def from_model(cls, blood_request, distance_km: Optional[float] = None):
        """Build the response from a BloodRequest with its donors loaded"""
        return cls(
            id=blood_request.id,
            requester_id=blood_request.requester_id,
            patient=blood_request.patient,
            blood_group=blood_request.blood_group,
            units=blood_request.units,
            urgency=blood_request.urgency,
            hospital=blood_request.hospital,
            reason=blood_request.reason,
            additional_notes=blood_request.additional_notes,
            status=blood_request.status,
            donors=[
                DonorEntryResponse.model_validate(entry)
                for entry in blood_request.donors
            ],
            notified_donors_count=len(blood_request.notified_donors or []),
            accepted_count=blood_request.accepted_or_completed_count,
            completed_count=blood_request.completed_count,
            expires_at=as_utc(blood_request.expires_at),
            created_at=as_utc(blood_request.created_at),
            updated_at=as_utc(blood_request.updated_at),
            distance_km=distance_km,
        )


class BloodRequestCreateResponse(BaseModel):
    request: BloodRequestResponse
    potential_donors_count: int
    message: str


class BloodRequestActionResponse(BaseModel):
    """Short acknowledgement for respond / complete / cancel"""

    id: UUID
    status: RequestStatus
    message: str

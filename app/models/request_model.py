import uuid
from datetime import datetime
from typing import List, Optional
from sqlalchemy import (
    String,
    Integer,
    Float,
    DateTime,
    ForeignKey,
    Enum,
    Text,
    JSON,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates
from app.db.base import Base, UUID, utcnow, as_utc
from app.schemas.request_schema import RequestStatus, Urgency, DonorStatus, Gender


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class BloodRequest(Base):
    """A request for blood units at a hospital, answered by nearby donors."""

    __tablename__ = "blood_requests"

    __table_args__ = (
        Index("idx_requests_status_created", "status", "created_at"),
        Index("idx_requests_group_status", "blood_group", "status"),
        Index("idx_requests_location", "hospital_latitude", "hospital_longitude"),
    )

    # --- Columns ---
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(),
        primary_key=True,
        default=uuid.uuid4,
        index=True,
    )
    requester_id: Mapped[uuid.UUID] = mapped_column(
        UUID(),
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

    # --- Patient ---
    patient_name: Mapped[str] = mapped_column(String(100), nullable=False)
    patient_age: Mapped[int] = mapped_column(Integer, nullable=False)
    patient_gender: Mapped[Gender] = mapped_column(
        Enum(Gender, values_callable=_enum_values, native_enum=False, length=10),
        nullable=False,
    )

    blood_group: Mapped[str] = mapped_column(String(3), nullable=False, index=True)
    units: Mapped[int] = mapped_column(Integer, nullable=False)
    urgency: Mapped[Urgency] = mapped_column(
        Enum(Urgency, values_callable=_enum_values, native_enum=False, length=10),
        default=Urgency.MEDIUM,
        nullable=False,
        index=True,
    )

    # --- Hospital ---
    hospital_name: Mapped[str] = mapped_column(String(150), nullable=False)
    hospital_address: Mapped[str] = mapped_column(String(255), nullable=False)
    hospital_longitude: Mapped[float] = mapped_column(Float, nullable=False)
    hospital_latitude: Mapped[float] = mapped_column(Float, nullable=False)

    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    additional_notes: Mapped[Optional[str]] = mapped_column(Text, default="")

    status: Mapped[RequestStatus] = mapped_column(
        Enum(RequestStatus, values_callable=_enum_values, native_enum=False, length=10),
        default=RequestStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    # Donor ids contacted at creation, stored as strings
    notified_donors: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # --- Relationships ---
    requester = relationship(
        "User", back_populates="blood_requests", foreign_keys=[requester_id]
    )
    donors = relationship(
        "RequestDonor",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="RequestDonor.id",
        lazy="selectin",
    )

    # --- Validators ---
    @validates("units")
    def validate_units(self, key, value):
        if value is None or not 1 <= int(value) <= 10:
            raise ValueError("units must be between 1 and 10")
        return int(value)

    # --- Derived views ---
    @property
    def patient(self) -> dict:
        return {
            "name": self.patient_name,
            "age": self.patient_age,
            "gender": self.patient_gender,
        }

    @property
    def hospital(self) -> dict:
        return {
            "name": self.hospital_name,
            "location": {
                "type": "Point",
                "coordinates": [self.hospital_longitude, self.hospital_latitude],
                "address": self.hospital_address,
            },
        }

    @property
    def is_active(self) -> bool:
        return self.status == RequestStatus.ACTIVE

    def is_past_expiry(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= as_utc(self.expires_at)

    def count_donors(self, *statuses: DonorStatus) -> int:
        return sum(1 for entry in self.donors if entry.status in statuses)

    @property
    def accepted_or_completed_count(self) -> int:
        return self.count_donors(DonorStatus.ACCEPTED, DonorStatus.COMPLETED)

    @property
    def completed_count(self) -> int:
        return self.count_donors(DonorStatus.COMPLETED)

    def find_donor_entry(self, donor_id: uuid.UUID) -> Optional["RequestDonor"]:
        for entry in self.donors:
            if entry.donor_id == donor_id:
                return entry
        return None

    def notified_donor_ids(self) -> List[uuid.UUID]:
        return [uuid.UUID(str(donor_id)) for donor_id in self.notified_donors or []]

    def to_dict(self) -> dict:
        """Compact summary, the shape sent in new_blood_request events"""
        return {
            "id": str(self.id),
            "blood_group": self.blood_group,
            "urgency": Urgency(self.urgency).value,
            "hospital": {
                "name": self.hospital_name,
                "address": self.hospital_address,
            },
            "expires_at": as_utc(self.expires_at).isoformat(),
        }

    def __repr__(self):
        return (
            f"<BloodRequest(id={self.id}, group={self.blood_group}, "
            f"units={self.units}, status={self.status})>"
        )


class RequestDonor(Base):
    """One donor's standing on a request. A donor has at most one entry per request."""

    __tablename__ = "request_donors"

    __table_args__ = (
        UniqueConstraint("request_id", "donor_id", name="uq_request_donor"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(),
        ForeignKey("blood_requests.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    donor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(),
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    status: Mapped[DonorStatus] = mapped_column(
        Enum(DonorStatus, values_callable=_enum_values, native_enum=False, length=10),
        default=DonorStatus.PENDING,
        nullable=False,
    )
    responded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    request = relationship("BloodRequest", back_populates="donors")
    donor = relationship("User")

    def __repr__(self):
        return f"<RequestDonor(donor={self.donor_id}, status={self.status})>"

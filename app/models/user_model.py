import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Boolean, DateTime, Float, ForeignKey, Integer, Index, or_
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.base import Base, UUID, utcnow
from app.services.eligibility import eligibility_cutoff, is_eligible, days_until_eligible


class User(Base):
    """A registered person. Donors and requesters share this identity."""

    __tablename__ = "users"

    __table_args__ = (
        Index("idx_users_location", "latitude", "longitude"),
        Index("idx_users_donor_group", "is_donor", "blood_group"),
    )

    # --- Columns ---
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(),
        primary_key=True,
        default=uuid.uuid4,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(
        String(100), unique=True, index=True, nullable=False
    )
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    blood_group: Mapped[str] = mapped_column(String(3), nullable=False, index=True)

    # --- Location ---
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    is_donor: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_donation: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    # --- Relationships ---
    blood_requests = relationship(
        "BloodRequest", back_populates="requester", foreign_keys="BloodRequest.requester_id"
    )
    donation_history = relationship(
        "DonationRecord",
        back_populates="donor",
        foreign_keys="DonationRecord.donor_id",
        order_by="DonationRecord.id",
        cascade="all, delete-orphan",
    )
    request_history = relationship(
        "RequestHistoryEntry",
        back_populates="user",
        order_by="RequestHistoryEntry.id",
        cascade="all, delete-orphan",
    )

    # --- Methods ---
    def __str__(self) -> str:
        return f"{self.name} ({self.email})"

    @hybrid_property
    def is_eligible_to_donate(self) -> bool:
        """Eligibility is always derived from the last donation, never stored."""
        return is_eligible(self.last_donation)

    @is_eligible_to_donate.expression
    def is_eligible_to_donate(cls):
        return or_(cls.last_donation.is_(None), cls.last_donation < eligibility_cutoff())

    @property
    def days_until_eligible(self) -> int:
        return days_until_eligible(self.last_donation)

    @property
    def location(self) -> dict:
        return {
            "type": "Point",
            "coordinates": [self.longitude, self.latitude],
            "address": self.address,
        }


class DonationRecord(Base):
    """Append-only donation history of a donor"""

    __tablename__ = "donation_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    donor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(), ForeignKey("blood_requests.id", ondelete="CASCADE"), index=True, nullable=False
    )
    recipient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    donated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    donor = relationship("User", back_populates="donation_history", foreign_keys=[donor_id])
    request = relationship("BloodRequest")


class RequestHistoryEntry(Base):
    """Append-only record of a requester's requests and the status they reached"""

    __tablename__ = "request_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(), ForeignKey("blood_requests.id", ondelete="CASCADE"), index=True, nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    user = relationship("User", back_populates="request_history")
    request = relationship("BloodRequest")

"""
Blood request lifecycle.

    active -> fulfilled | cancelled | expired      (all three terminal)

The functions here mutate a loaded ``BloodRequest`` in memory and never touch
the session. Every mutation also sets ``updated_at`` so the flush rewrites the
request row, which is what bumps its version and lets a concurrent writer be
detected even when only donor entries changed.
"""

from datetime import datetime, timedelta
from typing import Optional, Tuple
from uuid import UUID
import logging

from app.config import settings
from app.db.base import utcnow
from app.models.request_model import BloodRequest, RequestDonor
from app.schemas.request_schema import DonorResponse, DonorStatus, RequestStatus, Urgency
from app.utils.exceptions import NotFoundError, StateConflictError

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "patient",
    "blood_group",
    "units",
    "urgency",
    "hospital",
    "reason",
    "additional_notes",
)


def expiry_for(urgency, now: Optional[datetime] = None) -> datetime:
    hours = settings.URGENCY_EXPIRY_HOURS[Urgency(urgency).value]
    return (now or utcnow()) + timedelta(hours=hours)


def _touch(blood_request: BloodRequest, now: datetime):
    blood_request.updated_at = now


def _status(blood_request: BloodRequest) -> RequestStatus:
    return RequestStatus(blood_request.status)


def refresh_expiry(blood_request: BloodRequest, now: Optional[datetime] = None) -> bool:
    """Flip an active request past its expiry to ``expired``.

    Returns True only on the call that performed the flip, so repeated reads
    of an expired request do not mutate it again.
    """
    now = now or utcnow()
    if _status(blood_request) is not RequestStatus.ACTIVE:
        return False
    if not blood_request.is_past_expiry(now):
        return False

    blood_request.status = RequestStatus.EXPIRED
    _touch(blood_request, now)
    logger.info(f"Blood request {blood_request.id} expired at {blood_request.expires_at}")
    return True


def ensure_active(blood_request: BloodRequest, action: str):
    status = _status(blood_request)
    if status is not RequestStatus.ACTIVE:
        raise StateConflictError(f"Cannot {action} this request, it is {status.value}")


def _quota_met(blood_request: BloodRequest) -> bool:
    return blood_request.accepted_or_completed_count >= blood_request.units


def record_response(
    blood_request: BloodRequest,
    donor_id: UUID,
    response: DonorResponse,
    now: Optional[datetime] = None,
) -> Tuple[RequestDonor, bool]:
    """Upsert a donor's answer. Returns the entry and whether the request became fulfilled."""
    now = now or utcnow()
    response = DonorResponse(response)
    ensure_active(blood_request, "respond to")

    entry = blood_request.find_donor_entry(donor_id)
    if entry is not None and DonorStatus(entry.status) is DonorStatus.COMPLETED:
        raise StateConflictError("Donation already completed for this request")

    if entry is None:
        entry = RequestDonor(donor_id=donor_id)
        blood_request.donors.append(entry)

    entry.status = response.donor_status
    entry.responded_at = now
    _touch(blood_request, now)

    fulfilled = response is DonorResponse.ACCEPT and _quota_met(blood_request)
    if fulfilled:
        blood_request.status = RequestStatus.FULFILLED
        logger.info(
            f"Blood request {blood_request.id} fulfilled by pledges "
            f"({blood_request.accepted_or_completed_count}/{blood_request.units})"
        )
    return entry, fulfilled


def record_completion(
    blood_request: BloodRequest, donor_id: UUID, now: Optional[datetime] = None
) -> Tuple[RequestDonor, bool]:
    """Mark an accepted donor's donation as done. Returns the entry and whether the request became fulfilled."""
    now = now or utcnow()
    status = _status(blood_request)
    if status not in (RequestStatus.ACTIVE, RequestStatus.FULFILLED):
        raise StateConflictError(f"Cannot complete a donation, the request is {status.value}")

    entry = blood_request.find_donor_entry(donor_id)
    if entry is None:
        raise NotFoundError("Donor has not responded to this request")
    if DonorStatus(entry.status) is not DonorStatus.ACCEPTED:
        raise StateConflictError(
            f"Donor is not in accepted status (current: {DonorStatus(entry.status).value})"
        )

    entry.status = DonorStatus.COMPLETED
    entry.completed_at = now
    _touch(blood_request, now)

    fulfilled = (
        status is RequestStatus.ACTIVE
        and blood_request.completed_count >= blood_request.units
    )
    if fulfilled:
        blood_request.status = RequestStatus.FULFILLED
    return entry, fulfilled


def cancel(blood_request: BloodRequest, now: Optional[datetime] = None):
    ensure_active(blood_request, "cancel")
    blood_request.status = RequestStatus.CANCELLED
    _touch(blood_request, now or utcnow())


def apply_edit(
    blood_request: BloodRequest, changes: dict, now: Optional[datetime] = None
) -> bool:
    """Apply requester edits to an active request.

    A changed urgency restarts the expiry clock from ``now``. Lowering units to
    the number already pledged fulfils the request; the return value says so.
    """
    now = now or utcnow()
    ensure_active(blood_request, "edit")

    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

    if changes.get("patient") is not None:
        patient = changes["patient"]
        blood_request.patient_name = patient["name"]
        blood_request.patient_age = patient["age"]
        blood_request.patient_gender = patient["gender"]

    if changes.get("hospital") is not None:
        hospital = changes["hospital"]
        longitude, latitude = hospital["location"]["coordinates"]
        blood_request.hospital_name = hospital["name"]
        blood_request.hospital_address = hospital["location"]["address"]
        blood_request.hospital_longitude = longitude
        blood_request.hospital_latitude = latitude

    for field in ("blood_group", "units", "reason", "additional_notes"):
        if changes.get(field) is not None:
            setattr(blood_request, field, changes[field])

    new_urgency = changes.get("urgency")
    if new_urgency is not None and Urgency(new_urgency) is not Urgency(blood_request.urgency):
        blood_request.urgency = Urgency(new_urgency)
        blood_request.expires_at = expiry_for(new_urgency, now)

    _touch(blood_request, now)

    if _quota_met(blood_request):
        blood_request.status = RequestStatus.FULFILLED
        return True
    return False

"""
Donor locator: compatible, eligible donors near a point, nearest first.

The database narrows candidates with a latitude/longitude bounding box on
indexed columns; geopy's geodesic distance then applies the exact radius and
gives the ordering.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple
from uuid import UUID
import logging

from geopy.distance import geodesic
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.user_model import User
from app.schemas.request_schema import Urgency
from app.services.compatibility import get_compatible_donor_groups
from app.utils.performance_monitor import performance_monitor

logger = logging.getLogger(__name__)

# Shortest degree of latitude on the WGS84 ellipsoid, so the box never undershoots
KM_PER_DEGREE = 110.574


@dataclass
class DonorMatch:
    donor: User
    distance_km: float


def radius_for(urgency) -> float:
    """Search radius in km for an urgency level"""
    return float(settings.URGENCY_SEARCH_RADIUS_KM[Urgency(urgency).value])


def distance_km(longitude: float, latitude: float, other_longitude: float, other_latitude: float) -> float:
    return geodesic((latitude, longitude), (other_latitude, other_longitude)).km


def bounding_box(
    longitude: float, latitude: float, radius_km: float
) -> Tuple[float, float, Optional[Tuple[float, float]]]:
    """Latitude bounds plus longitude bounds (None when the box covers every longitude).

    Longitude bounds may fall outside [-180, 180] when the box crosses the
    antimeridian; ``_box_filter`` wraps them.
    """
    lat_delta = radius_km / KM_PER_DEGREE
    min_lat = max(-90.0, latitude - lat_delta)
    max_lat = min(90.0, latitude + lat_delta)

    # Near the poles a degree of longitude shrinks to nothing
    cos_lat = math.cos(math.radians(max(abs(min_lat), abs(max_lat))))
    if cos_lat <= 1e-6:
        return min_lat, max_lat, None
    lon_delta = radius_km / (KM_PER_DEGREE * cos_lat)
    if lon_delta >= 180:
        return min_lat, max_lat, None
    return min_lat, max_lat, (longitude - lon_delta, longitude + lon_delta)


def _box_filter(lat_column, lon_column, longitude, latitude, radius_km):
    min_lat, max_lat, lon_bounds = bounding_box(longitude, latitude, radius_km)
    conditions = [lat_column.between(min_lat, max_lat)]
    if lon_bounds is not None:
        min_lon, max_lon = lon_bounds
        if min_lon < -180:
            conditions.append(
                or_(lon_column >= min_lon + 360, lon_column <= max_lon)
            )
        elif max_lon > 180:
            conditions.append(
                or_(lon_column >= min_lon, lon_column <= max_lon - 360)
            )
        else:
            conditions.append(lon_column.between(min_lon, max_lon))
    return and_(*conditions)


def request_box_filter(model, longitude: float, latitude: float, radius_km: float):
    """Bounding-box condition over a BloodRequest's hospital coordinates"""
    return _box_filter(
        model.hospital_latitude, model.hospital_longitude, longitude, latitude, radius_km
    )


@performance_monitor
async def find_candidate_donors(
    db: AsyncSession,
    blood_group: str,
    longitude: float,
    latitude: float,
    radius_km: float,
    exclude_user_id: Optional[UUID] = None,
    limit: Optional[int] = None,
) -> List[DonorMatch]:
    """
    Donors who can give to ``blood_group`` within ``radius_km`` of the point.

    Only users flagged as donors and currently eligible are returned. ``limit``
    defaults to ``DONOR_FANOUT_LIMIT``; when both are None the list is uncapped.
    """
    groups = get_compatible_donor_groups(blood_group)
    if not groups:
        logger.warning(f"No compatible donor groups for blood group {blood_group!r}")
        return []

    query = select(User).where(
        User.is_donor.is_(True),
        User.is_eligible_to_donate,
        User.blood_group.in_(sorted(groups)),
        _box_filter(User.latitude, User.longitude, longitude, latitude, radius_km),
    )
    if exclude_user_id is not None:
        query = query.where(User.id != exclude_user_id)

    result = await db.execute(query)
    in_box = result.scalars().all()

    matches = []
    for donor in in_box:
        distance = distance_km(longitude, latitude, donor.longitude, donor.latitude)
        if distance <= radius_km:
            matches.append(DonorMatch(donor=donor, distance_km=round(distance, 3)))
    matches.sort(key=lambda match: match.distance_km)

    cap = limit if limit is not None else settings.DONOR_FANOUT_LIMIT
    if cap is not None and len(matches) > cap:
        logger.info(
            f"Donor fan-out capped at {cap} of {len(matches)} candidates",
            extra={"event_type": "donor_fanout_capped", "blood_group": blood_group},
        )
        matches = matches[:cap]

    logger.info(
        f"Found {len(matches)} candidate donors for {blood_group} within {radius_km} km "
        f"({len(in_box)} in bounding box)"
    )
    return matches

import pytest

from app.config import settings
from app.services.donor_locator import (
    bounding_box,
    distance_km,
    find_candidate_donors,
    radius_for,
)

ACCRA = (-0.1870, 5.6037)
KUMASI = (-1.6244, 6.6885)


@pytest.mark.parametrize(
    "urgency, radius",
    [("critical", 10), ("high", 7), ("medium", 5), ("low", 3)],
)
def test_radius_scales_with_urgency(urgency, radius):
    assert radius_for(urgency) == radius


def test_geodesic_distance():
    assert 190 < distance_km(*ACCRA, *KUMASI) < 210
    assert distance_km(*ACCRA, *ACCRA) == 0


class TestBoundingBox:
    def test_box_contains_points_at_radius(self, locate):
        longitude, latitude = ACCRA
        min_lat, max_lat, (min_lon, max_lon) = bounding_box(longitude, latitude, 10)

        _, north = locate(10)
        assert min_lat < latitude < max_lat
        assert north <= max_lat
        # 10 km east at this latitude is about 0.09 degrees
        assert max_lon > longitude + 0.09
        assert min_lon < longitude - 0.09

    def test_polar_box_spans_all_longitudes(self):
        min_lat, max_lat, lon_bounds = bounding_box(0.0, 89.99, 50)
        assert lon_bounds is None
        assert max_lat == 90.0

    def test_box_crossing_antimeridian(self):
        _, _, (min_lon, max_lon) = bounding_box(179.99, 0.0, 10)
        assert max_lon > 180
        assert min_lon < 179.99


class TestFindCandidateDonors:
    @pytest.fixture
    async def donors(self, db_session, factory):
        """Donors around the test hospital, keyed by a short description."""
        create = factory.create_user
        return {
            "o_neg_2km": await create(db_session, "O-", km_north=2),
            "o_neg_8km": await create(db_session, "O-", km_north=8),
            "o_pos_1km": await create(db_session, "O+", km_north=1),
            "o_neg_15km": await create(db_session, "O-", km_north=15),
            "o_neg_recent": await create(
                db_session, "O-", km_north=3, last_donation=factory.days_ago(30)
            ),
            "o_neg_not_donor": await create(db_session, "O-", km_north=1, is_donor=False),
            "a_pos_4km": await create(db_session, "A+", km_north=4),
        }

    async def test_only_compatible_eligible_donors_within_radius(self, db_session, donors):
        matches = await find_candidate_donors(
            db_session, "O-", *ACCRA, radius_km=10
        )

        assert [match.donor.id for match in matches] == [
            donors["o_neg_2km"].id,
            donors["o_neg_8km"].id,
        ]
        assert 1.9 < matches[0].distance_km < 2.1
        assert 7.9 < matches[1].distance_km < 8.1

    async def test_nearest_first_across_groups(self, db_session, donors):
        matches = await find_candidate_donors(db_session, "O+", *ACCRA, radius_km=10)

        assert [match.donor.id for match in matches] == [
            donors["o_pos_1km"].id,
            donors["o_neg_2km"].id,
            donors["o_neg_8km"].id,
        ]
        distances = [match.distance_km for match in matches]
        assert distances == sorted(distances)

    async def test_radius_is_exact(self, db_session, donors):
        matches = await find_candidate_donors(db_session, "AB+", *ACCRA, radius_km=5)
        assert {match.donor.id for match in matches} == {
            donors["o_pos_1km"].id,
            donors["o_neg_2km"].id,
            donors["a_pos_4km"].id,
        }

    async def test_excludes_given_user(self, db_session, donors):
        matches = await find_candidate_donors(
            db_session,
            "O-",
            *ACCRA,
            radius_km=10,
            exclude_user_id=donors["o_neg_2km"].id,
        )
        assert [match.donor.id for match in matches] == [donors["o_neg_8km"].id]

    async def test_eligibility_boundary(self, db_session, factory):
        eligible = await factory.create_user(
            db_session, "B-", km_north=1, last_donation=factory.days_ago(91)
        )
        await factory.create_user(
            db_session, "B-", km_north=1, last_donation=factory.days_ago(89)
        )

        matches = await find_candidate_donors(db_session, "B-", *ACCRA, radius_km=5)
        assert [match.donor.id for match in matches] == [eligible.id]

    async def test_explicit_limit(self, db_session, donors):
        matches = await find_candidate_donors(
            db_session, "O+", *ACCRA, radius_km=10, limit=1
        )
        assert [match.donor.id for match in matches] == [donors["o_pos_1km"].id]

    async def test_configured_fanout_cap(self, db_session, donors, monkeypatch):
        monkeypatch.setattr(settings, "DONOR_FANOUT_LIMIT", 2)
        matches = await find_candidate_donors(db_session, "O+", *ACCRA, radius_km=10)
        assert len(matches) == 2

        monkeypatch.setattr(settings, "DONOR_FANOUT_LIMIT", None)
        matches = await find_candidate_donors(db_session, "O+", *ACCRA, radius_km=10)
        assert len(matches) == 3

    async def test_unknown_group_matches_nobody(self, db_session, donors):
        assert await find_candidate_donors(db_session, "X+", *ACCRA, radius_km=50) == []

    async def test_across_antimeridian(self, db_session, factory):
        west = await factory.create_user(db_session, "O-")
        east = await factory.create_user(db_session, "O-")
        west.longitude, west.latitude = -179.99, 0.0
        east.longitude, east.latitude = 179.99, 0.0
        await db_session.commit()

        matches = await find_candidate_donors(db_session, "O-", 179.995, 0.0, radius_km=5)

        assert [match.donor.id for match in matches] == [east.id, west.id]

from datetime import datetime, timedelta, timezone

from app.models.user_model import User
from app.services.eligibility import (
    days_until_eligible,
    eligibility_cutoff,
    is_eligible,
    next_eligible_at,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestIsEligible:
    def test_never_donated(self):
        assert is_eligible(None, NOW)

    def test_donated_91_days_ago(self):
        assert is_eligible(NOW - timedelta(days=91), NOW)

    def test_donated_89_days_ago(self):
        assert not is_eligible(NOW - timedelta(days=89), NOW)

    def test_exactly_90_days_is_not_yet_eligible(self):
        assert not is_eligible(NOW - timedelta(days=90), NOW)

    def test_naive_timestamps_are_treated_as_utc(self):
        naive = (NOW - timedelta(days=91)).replace(tzinfo=None)
        assert is_eligible(naive, NOW)


class TestEligibilityDates:
    def test_cutoff(self):
        assert eligibility_cutoff(NOW) == NOW - timedelta(days=90)

    def test_next_eligible_at(self):
        last = NOW - timedelta(days=10)
        assert next_eligible_at(last) == last + timedelta(days=90)
        assert next_eligible_at(None) is None

    def test_days_until_eligible(self):
        assert days_until_eligible(None, NOW) == 0
        assert days_until_eligible(NOW - timedelta(days=120), NOW) == 0
        assert days_until_eligible(NOW - timedelta(days=10), NOW) == 80

    def test_partial_day_rounds_up(self):
        last = NOW - timedelta(days=89, hours=23)
        assert days_until_eligible(last, NOW) == 1


class TestUserEligibility:
    def test_is_derived_from_last_donation(self):
        user = User(last_donation=datetime.now(timezone.utc) - timedelta(days=30))
        assert user.is_eligible_to_donate is False
        assert user.days_until_eligible == 60

        user.last_donation = datetime.now(timezone.utc) - timedelta(days=100)
        assert user.is_eligible_to_donate is True
        assert user.days_until_eligible == 0

    def test_new_user_is_eligible(self):
        assert User(last_donation=None).is_eligible_to_donate is True

import pytest

from app.schemas.base_schema import BloodType
from app.services.compatibility import (
    COMPATIBLE_DONORS,
    get_compatible_donor_groups,
    get_recipient_groups,
    is_compatible,
)


class TestCompatibleDonorGroups:
    @pytest.mark.parametrize(
        "recipient, donors",
        [
            ("O-", {"O-"}),
            ("O+", {"O+", "O-"}),
            ("A-", {"A-", "O-"}),
            ("B+", {"B+", "B-", "O+", "O-"}),
            ("AB-", {"A-", "B-", "AB-", "O-"}),
        ],
    )
    def test_known_groups(self, recipient, donors):
        assert get_compatible_donor_groups(recipient) == donors

    def test_ab_positive_is_universal_recipient(self):
        assert get_compatible_donor_groups("AB+") == set(BloodType.get_values())

    def test_o_negative_can_give_to_everyone(self):
        for recipient in BloodType.get_values():
            assert "O-" in get_compatible_donor_groups(recipient)

    def test_accepts_enum_members(self):
        assert get_compatible_donor_groups(BloodType.A_POSITIVE) == {"A+", "A-", "O+", "O-"}

    def test_normalises_case_and_whitespace(self):
        assert get_compatible_donor_groups(" ab- ") == get_compatible_donor_groups("AB-")

    @pytest.mark.parametrize("group", ["C+", "", None, "A"])
    def test_unknown_group_yields_empty_set(self, group):
        assert get_compatible_donor_groups(group) == frozenset()

    def test_every_recipient_can_receive_its_own_group(self):
        for recipient, donors in COMPATIBLE_DONORS.items():
            assert recipient in donors


class TestRecipientGroups:
    def test_o_negative_serves_all_groups_in_canonical_order(self):
        assert get_recipient_groups("O-") == BloodType.get_values()

    def test_ab_positive_only_serves_itself(self):
        assert get_recipient_groups("AB+") == ["AB+"]

    def test_a_negative(self):
        assert get_recipient_groups("A-") == ["A+", "A-", "AB+", "AB-"]

    def test_unknown_donor_group(self):
        assert get_recipient_groups("Z") == []


def test_is_compatible():
    assert is_compatible("O-", "AB+")
    assert is_compatible("A-", "A+")
    assert not is_compatible("A+", "A-")
    assert not is_compatible("B+", "O+")

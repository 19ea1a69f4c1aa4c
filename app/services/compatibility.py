"""
Red cell compatibility between recipient and donor blood groups.
"""

from typing import Dict, FrozenSet, List

from app.schemas.base_schema import BloodType

# recipient group -> donor groups it can receive from
COMPATIBLE_DONORS: Dict[str, FrozenSet[str]] = {
    "A+": frozenset({"A+", "A-", "O+", "O-"}),
    "A-": frozenset({"A-", "O-"}),
    "B+": frozenset({"B+", "B-", "O+", "O-"}),
    "B-": frozenset({"B-", "O-"}),
    "AB+": frozenset({"A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"}),
    "AB-": frozenset({"A-", "B-", "AB-", "O-"}),
    "O+": frozenset({"O+", "O-"}),
    "O-": frozenset({"O-"}),
}


def _group_value(blood_group) -> str:
    if isinstance(blood_group, BloodType):
        return blood_group.value
    return str(blood_group).strip().upper() if blood_group else ""


def get_compatible_donor_groups(blood_group) -> FrozenSet[str]:
    """Donor groups that may give to a recipient of ``blood_group``.

    Unknown groups yield an empty set rather than an error.
    """
    return COMPATIBLE_DONORS.get(_group_value(blood_group), frozenset())


def get_recipient_groups(donor_group) -> List[str]:
    """Recipient groups a donor of ``donor_group`` can serve, in canonical order."""
    donor = _group_value(donor_group)
    return [
        recipient
        for recipient in BloodType.get_values()
        if donor in COMPATIBLE_DONORS[recipient]
    ]


def is_compatible(donor_group, recipient_group) -> bool:
    return _group_value(donor_group) in get_compatible_donor_groups(recipient_group)

from .user_model import User, DonationRecord, RequestHistoryEntry
from .request_model import BloodRequest, RequestDonor

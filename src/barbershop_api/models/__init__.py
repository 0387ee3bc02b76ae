"""SQLAlchemy models package."""

from .admin import AdminActionLog  # noqa: F401
from .booking import Booking, LoyaltyCreditSource  # noqa: F401
from .loyalty import LoyaltyAccount  # noqa: F401
from .notification import (  # noqa: F401
    NotificationHistory,
    NotificationHistoryStatus,
    NotificationPreference,
)
from .push import PushSubscription  # noqa: F401
from .user import User  # noqa: F401

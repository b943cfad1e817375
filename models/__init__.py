from .schemas import (
    Currency,
    DeliveryReceipt,
    DispatchSummary,
    EligibilityResultContext,
    EligibilityVerdict,
    FlightRecord,
    FlightStatus,
    FlightStatusReport,
    FollowupContext,
    NotificationKind,
    NotificationRecord,
    NotificationStatus,
    RenderedEmail,
    UserRecord,
    VerificationContext,
)

__all__ = [
    "Currency",
    "DeliveryReceipt",
    "DispatchSummary",
    "EligibilityResultContext",
    "EligibilityVerdict",
    "FlightRecord",
    "FlightStatus",
    "FlightStatusReport",
    "FollowupContext",
    "NotificationKind",
    "NotificationRecord",
    "NotificationStatus",
    "RenderedEmail",
    "UserRecord",
    "VerificationContext",
]

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Currency(str, Enum):
    EUR = "EUR"
    GBP = "GBP"


class FlightStatus(str, Enum):
    TRACKING = "tracking"
    COMPLETED = "completed"
    CLAIMED = "claimed"
    EXPIRED = "expired"


class NotificationKind(str, Enum):
    VERIFICATION = "verification"
    ELIGIBILITY_RESULT = "eligibility_result"
    FOLLOWUP_FIRST = "followup_first"
    FOLLOWUP_FINAL = "followup_final"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class EligibilityVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    eligible: bool
    amount: Decimal
    currency: Currency
    reason: str


class UserRecord(BaseModel):
    id: str
    email: str
    consent_given: bool = False
    consent_timestamp: Optional[datetime] = None
    consent_ip_hash: Optional[str] = None
    marketing_consent: bool = False
    email_verified: bool = False
    verification_token: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class FlightRecord(BaseModel):
    id: str
    user_id: str
    flight_number: str
    flight_date: date
    departure_airport: str = "UNK"
    arrival_airport: str = "UNK"
    departure_country: str = ""
    arrival_country: str = ""
    distance_km: float = 0.0
    delay_minutes: int = 0
    # Always the calculator's output for (distance_km, delay_minutes, countries).
    verdict: EligibilityVerdict
    status: FlightStatus = FlightStatus.TRACKING
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def compensation_eligible(self) -> bool:
        return self.verdict.eligible


class NotificationRecord(BaseModel):
    id: str
    user_id: str
    flight_id: Optional[str] = None
    kind: str
    subject: str = ""
    scheduled_for: datetime
    status: NotificationStatus = NotificationStatus.PENDING
    sent_at: Optional[datetime] = None
    external_id: Optional[str] = None
    error_text: Optional[str] = None
    claim_token: Optional[str] = None
    claimed_at: Optional[datetime] = None
    # Set when the record cannot be rendered; held records are not dispatched.
    held_at: Optional[datetime] = None
    hold_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class DispatchSummary(BaseModel):
    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0


class VerificationContext(BaseModel):
    email: str = Field(min_length=3)
    verification_token: str = Field(min_length=1)
    app_url: str


class EligibilityResultContext(BaseModel):
    email: str = Field(min_length=3)
    flight_number: str = Field(min_length=2)
    flight_date: date
    departure_airport: str
    arrival_airport: str
    delay_minutes: int = Field(ge=180)
    compensation_amount: Decimal = Field(gt=0)
    compensation_currency: Currency
    reason: str
    app_url: str
    unsubscribe_url: str


class FollowupContext(EligibilityResultContext):
    suggested_donation: Decimal = Field(gt=0)


class RenderedEmail(BaseModel):
    subject: str
    html: str


class DeliveryReceipt(BaseModel):
    id: str
    provider: str = "unknown"


class FlightStatusReport(BaseModel):
    flight_number: str
    flight_date: date
    status: FlightStatus
    provider_status: str = "unknown"
    delay_minutes: int = 0
    departure_airport: str = "UNK"
    arrival_airport: str = "UNK"
    airline: str = ""
    estimated: bool = False

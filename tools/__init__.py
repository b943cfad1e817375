from .email_tools import EmailProvider, OutboxEmailTools, ResendEmailClient, build_email_provider
from .flight_status_tools import FlightDataUnavailable, FlightStatusTools

__all__ = [
    "EmailProvider",
    "FlightDataUnavailable",
    "FlightStatusTools",
    "OutboxEmailTools",
    "ResendEmailClient",
    "build_email_provider",
]

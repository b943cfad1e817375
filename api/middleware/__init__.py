from .auth import require_cron_secret
from .logging import RequestLoggingMiddleware

__all__ = ["require_cron_secret", "RequestLoggingMiddleware"]

from .logger import setup_logging, get_logger, api_logger, execution_logger
from .retry import RetryConfig, RetryableClient
from .clock import Clock, SystemClock, FixedClock, system_clock
from .utcnow import utcnow, utc_date, to_iso

__all__ = [
    # Logger
    "setup_logging",
    "get_logger",
    "api_logger",
    "execution_logger",

    # Retry
    "RetryConfig",
    "RetryableClient",

    # Clock
    "Clock",
    "SystemClock",
    "FixedClock",
    "system_clock",
    "utcnow",
    "utc_date",
    "to_iso",
]

import logging
import sys
import structlog
import os
from opentelemetry.instrumentation.logging import LoggingInstrumentor

# Global variable to store test output
test_output = []


def get_log_level():
    """Get log level from environment or default to INFO"""
    return os.getenv("LOG_LEVEL", "INFO").upper()


def get_log_renderer():
    """Get log renderer based on environment"""
    env = os.getenv("ENVIRONMENT", "development")
    # Machine-readable output for tests and production
    if env in ["test", "production"]:
        return structlog.processors.JSONRenderer()
    # Coloured console output for local development
    return structlog.dev.ConsoleRenderer(colors=True, sort_keys=False)


def test_output_processor(logger, method_name, event_dict):
    """Custom processor that stores output for test assertions"""
    env = os.getenv("ENVIRONMENT", "development")
    if env == "test":
        # Keep a copy of each event so tests can assert on it
        test_output.append(event_dict.copy())
    return event_dict


def configure_logging():
    """Set up structlog + OTEL context injection."""
    # Processors shared by every logger
    shared_processors = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.ExceptionPrettyPrinter(),
    ]

    # Route structlog through the stdlib logging machinery
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            test_output_processor,  # Runs before rendering so tests see raw dicts
            get_log_renderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Stdlib handler that prints the rendered line
    env = os.getenv("ENVIRONMENT", "development")
    if env == "test":
        # In test mode, write to stdout for easier capture
        handler = logging.StreamHandler(sys.stdout)
    else:
        # Everywhere else use stderr
        handler = logging.StreamHandler()

    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger = logging.getLogger()
    root_logger.handlers = [handler]  # Drop handlers installed by earlier imports
    root_logger.setLevel(get_log_level())

    # Silence Uvicorn noise but keep access logs routed through structlog
    logging.getLogger("uvicorn.error").handlers.clear()
    logging.getLogger("uvicorn.access").handlers.clear()

    # Inject trace and span ids into log records; must run after the handlers exist
    LoggingInstrumentor().instrument(set_logging_format=False)


# Business Event Log Names
class BusinessEvents:
    """Standard names for business event logs"""

    API_ENTRY = "api.request"
    RATES_REFRESHED = "rates.refreshed"
    RATES_REFRESH_FAILED = "rates.refresh_failed"
    RATES_STALE_FALLBACK = "rates.stale_fallback"
    CONVERSION_INITIATED = "conversion.initiated"
    CONVERSION_PROCESSING = "conversion.processing"
    CONVERSION_COMPLETED = "conversion.completed"
    CONVERSION_FAILED = "conversion.failed"
    CONVERSION_EXECUTION_ERROR = "conversion.execution_error"
    CONVERSION_CANCELLED = "conversion.cancelled"
    SETTINGS_UPDATED = "settings.updated"
    SETTINGS_TOGGLED = "settings.toggled"
    SETTINGS_DEACTIVATED = "settings.deactivated"
    PAYOUT_SUBMITTED = "payout.submitted"
    PAYOUT_DECLINED = "payout.declined"
    PAYOUT_TIMEOUT = "payout.timeout"
    PAYOUT_LATE_RESULT = "payout.late_result"


# Configure logging when module is imported
configure_logging()

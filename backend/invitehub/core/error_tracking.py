"""
Error tracking - reports infrastructure failures.

Reports go through the "invitehub.errors" logger at ERROR level with the
traceback attached. When ERROR_TRACKING_ENABLED is set, the MongoDB log handler
persists them to the system_logs collection for review.
"""

import logging
from typing import Any

from invitehub.core.tracing import TracingContext

logger = logging.getLogger("invitehub.errors")


def report_error(exc: BaseException, **context: Any) -> None:
    """Report an exception with optional context fields."""
    details = ", ".join(f"{key}={value}" for key, value in sorted(context.items()))
    logger.error(
        f"{TracingContext.get_log_prefix()} {type(exc).__name__}: {exc}"
        + (f" ({details})" if details else ""),
        exc_info=(type(exc), exc, exc.__traceback__),
    )

"""
Tracing Context - contextvars-based correlation for API requests and Celery jobs.

Usage:
    TracingContext.set(correlation_id="abc-123", invite_token="f00d...")
    prefix = TracingContext.get_log_prefix()  # "[corr=abc-123]"
    TracingContext.clear()
"""

import uuid
from contextvars import ContextVar
from typing import Dict

_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")
_invite_token: ContextVar[str] = ContextVar("invite_token", default="")
_job_id: ContextVar[str] = ContextVar("job_id", default="")
_task_name: ContextVar[str] = ContextVar("task_name", default="")


class TracingContext:
    """Thread-safe tracing context."""

    @staticmethod
    def set(
        correlation_id: str = "",
        invite_token: str = "",
        job_id: str = "",
        task_name: str = "",
    ) -> None:
        """Set tracing context for current execution."""
        if correlation_id:
            _correlation_id.set(correlation_id)
        if invite_token:
            _invite_token.set(invite_token)
        if job_id:
            _job_id.set(job_id)
        if task_name:
            _task_name.set(task_name)

    @staticmethod
    def get() -> Dict[str, str]:
        """Get current tracing context as dict."""
        return {
            "correlation_id": _correlation_id.get(),
            "invite_token": _invite_token.get(),
            "job_id": _job_id.get(),
            "task_name": _task_name.get(),
        }

    @staticmethod
    def get_correlation_id() -> str:
        return _correlation_id.get()

    @staticmethod
    def get_or_create_correlation_id() -> str:
        """Get current correlation ID or create a new one."""
        corr_id = _correlation_id.get()
        if not corr_id:
            corr_id = str(uuid.uuid4())
            _correlation_id.set(corr_id)
        return corr_id

    @staticmethod
    def get_log_prefix() -> str:
        corr_id = _correlation_id.get()
        if corr_id:
            return f"[corr={corr_id[:8]}]"
        return ""

    @staticmethod
    def clear() -> None:
        _correlation_id.set("")
        _invite_token.set("")
        _job_id.set("")
        _task_name.set("")

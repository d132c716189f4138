"""Database models."""

from labcenter.models.appointments import appointments
from labcenter.models.catalog import lab_tests, report_formats
from labcenter.models.history import history_logs, reviews
from labcenter.models.metadata import metadata
from labcenter.models.notifications import notifications, push_tokens
from labcenter.models.users import users

__all__ = [
    "appointments",
    "history_logs",
    "lab_tests",
    "metadata",
    "notifications",
    "push_tokens",
    "report_formats",
    "reviews",
    "users",
]

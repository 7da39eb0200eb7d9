from beanie import Document, Indexed
from pydantic import Field
from datetime import datetime

from utils.dates import utc_now

DEFAULT_MAX_REQUESTS = 250
MIN_MAX_REQUESTS = 1
MAX_MAX_REQUESTS = 1000


def clamp_max_requests(value: int) -> int:
    return max(MIN_MAX_REQUESTS, min(MAX_MAX_REQUESTS, int(value)))


class ApiUsage(Document):
    """One usage record per UTC calendar day for the external AI advisor."""

    date: Indexed(datetime, unique=True)  # type: ignore[valid-type]
    total_requests: int = 0
    requests_today: int = 0
    max_requests: int = DEFAULT_MAX_REQUESTS
    last_reset: datetime = Field(default_factory=utc_now)
    is_active: bool = True
    admin_notes: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "api_usage"
        indexes = [
            [("date", -1)],  # Recency-first history
        ]

    @classmethod
    def defaults_for(cls, day: datetime, now: datetime) -> dict:
        """Field values of a fresh record for `day`, keyed by storage name."""
        return {
            "date": day,
            "total_requests": 0,
            "requests_today": 0,
            "max_requests": DEFAULT_MAX_REQUESTS,
            "last_reset": day,
            "is_active": True,
            "admin_notes": "",
            "created_at": now,
            "updated_at": now,
        }

    def is_limit_reached(self) -> bool:
        return self.requests_today >= self.max_requests

    def can_make_request(self) -> bool:
        return self.is_active and not self.is_limit_reached()

    @property
    def remaining_requests(self) -> int:
        return self.max_requests - self.requests_today

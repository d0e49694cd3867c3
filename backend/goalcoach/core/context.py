from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from goalcoach.core.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class RequestContext:
    """Per-request identity and clock, passed explicitly to every service call"""

    user_id: str
    timezone: str = settings.default_timezone
    now: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        object.__setattr__(self, "now", ensure_utc(self.now))

    @classmethod
    def for_user(cls, user, now: Optional[datetime] = None) -> "RequestContext":
        return cls(
            user_id=str(user.id),
            timezone=user.timezone or settings.default_timezone,
            now=now or utcnow(),
        )

"""Data models for the event lifecycle."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class EventStatus(str, Enum):
    """Lifecycle status of an event."""
    DRAFT = 'DRAFT'
    PUBLISHED = 'PUBLISHED'
    CANCELLED = 'CANCELLED'


PUBLIC_STATUSES = frozenset({EventStatus.PUBLISHED, EventStatus.CANCELLED})


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a UTC datetime as ISO 8601 with a trailing Z."""
    return value.astimezone(timezone.utc).isoformat(
        timespec='milliseconds'
    ).replace('+00:00', 'Z')


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO 8601 timestamp into a UTC datetime.

    Naive timestamps are taken to be UTC.

    Raises:
        ValueError: If the value is not a valid ISO 8601 timestamp
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid timestamp: {value!r}")
    text = value.strip()
    if text.endswith('Z') or text.endswith('z'):
        text = text[:-1] + '+00:00'
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class EventRecord:
    """Private, stored representation of an event."""
    id: str
    title: str
    start_at: datetime
    end_at: datetime
    location: str
    status: EventStatus
    updated_at: datetime
    internal_notes: Optional[str] = None
    created_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'title': self.title,
            'startAt': format_timestamp(self.start_at),
            'endAt': format_timestamp(self.end_at),
            'location': self.location,
            'status': self.status.value,
            'updatedAt': format_timestamp(self.updated_at),
        }
        if self.internal_notes is not None:
            data['internalNotes'] = self.internal_notes
        if self.created_by is not None:
            data['createdBy'] = self.created_by
        return data


@dataclass(frozen=True)
class PublicEvent:
    """Redacted projection of an event safe for anonymous readers."""
    id: str
    title: str
    start_at: datetime
    end_at: datetime
    location: str
    status: EventStatus
    is_upcoming: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'startAt': format_timestamp(self.start_at),
            'endAt': format_timestamp(self.end_at),
            'location': self.location,
            'status': self.status.value,
            'isUpcoming': self.is_upcoming,
        }


def to_public_event(
    record: EventRecord, now: Optional[datetime] = None
) -> Optional[PublicEvent]:
    """
    Project a record onto its public view.

    Args:
        record: Stored event
        now: Reference time for ``is_upcoming`` (default: current UTC time)

    Returns:
        PublicEvent, or None when the record is not publicly visible
    """
    if record.status not in PUBLIC_STATUSES:
        return None

    now = now or utc_now()
    return PublicEvent(
        id=record.id,
        title=record.title,
        start_at=record.start_at,
        end_at=record.end_at,
        location=record.location,
        status=record.status,
        is_upcoming=record.start_at > now
    )


@dataclass(frozen=True)
class EventUpdate:
    """Partial change accepted by the update entry point."""
    status: Optional[EventStatus] = None
    internal_notes: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.status is None and self.internal_notes is None


@dataclass
class ImportedEvent:
    """Raw event item scraped from a calendar feed."""
    title: str
    date: str
    start_time: str
    end_time: Optional[str]
    location: str
    status: Optional[str] = None
    url: Optional[str] = None


@dataclass
class ImportResult:
    """Result of a batch import."""
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

"""Shared fixtures for the event service tests."""
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from processor.models import EventRecord, EventStatus

FIXED_NOW = datetime(2025, 11, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixed_now():
    """Reference time used by tests that need a stable clock."""
    return FIXED_NOW


@pytest.fixture
def make_record():
    """Factory for EventRecord values with sensible defaults."""
    def _make(
        title='Community Picnic',
        start_at=None,
        hours=2,
        location='Central Park',
        status=EventStatus.DRAFT,
        event_id=None,
        internal_notes=None,
        created_by=None
    ):
        start_at = start_at or FIXED_NOW + timedelta(days=7)
        return EventRecord(
            id=event_id or str(uuid.uuid4()),
            title=title,
            start_at=start_at,
            end_at=start_at + timedelta(hours=hours),
            location=location,
            status=status,
            updated_at=FIXED_NOW,
            internal_notes=internal_notes,
            created_by=created_by
        )
    return _make


@pytest.fixture
def create_payload():
    """Valid creation payload starting one week from now."""
    start_at = datetime.now(timezone.utc) + timedelta(days=7)
    return {
        'title': 'Live Music Night',
        'startAt': start_at.isoformat(),
        'endAt': (start_at + timedelta(hours=3)).isoformat(),
        'location': 'Spanish Springs Town Square',
        'internalNotes': 'Band confirmed',
        'createdBy': 'organizer@example.com'
    }

"""Event processor for validating and normalizing event data."""
import hashlib
import logging
import re
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from processor.errors import ValidationError
from processor.models import (
    EventRecord,
    EventStatus,
    EventUpdate,
    ImportedEvent,
    parse_timestamp,
    utc_now,
)
from processor.transitions import (
    check_initial_status,
    check_mutable,
    check_transition,
)

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')


class EventProcessor:
    """Processor for validating event input and applying changes."""

    MAX_TITLE_LENGTH = 200
    DEFAULT_DURATION = timedelta(hours=1)

    def build_event(
        self,
        payload: Dict[str, Any],
        now: Optional[datetime] = None,
        event_id: Optional[str] = None
    ) -> EventRecord:
        """
        Validate a creation payload and build a new record.

        All problems are collected and reported together.

        Args:
            payload: Mapping with title, startAt, endAt, location and
                optional status, internalNotes, createdBy
            now: Reference time for the future-start rule
            event_id: Identifier to assign (default: random UUID4)

        Returns:
            New EventRecord

        Raises:
            ValidationError: If any field is invalid
        """
        now = now or utc_now()
        errors: List[str] = []

        title = payload.get('title')
        errors.extend(self._validate_title(title))

        start_at = self._parse_field(payload.get('startAt'), 'startAt', errors)
        end_at = self._parse_field(payload.get('endAt'), 'endAt', errors)
        if start_at is not None and end_at is not None:
            if start_at >= end_at:
                errors.append('startAt must be before endAt')
            if start_at <= now:
                errors.append('Events cannot start in the past')

        location = payload.get('location')
        if not isinstance(location, str) or not location.strip():
            errors.append('Location cannot be empty')

        status = EventStatus.DRAFT
        raw_status = payload.get('status')
        if raw_status is not None:
            parsed_status = self.parse_status(raw_status, errors)
            if parsed_status is not None:
                status = parsed_status

        internal_notes = payload.get('internalNotes')
        if internal_notes is not None and not isinstance(internal_notes, str):
            errors.append('internalNotes must be a string')

        created_by = payload.get('createdBy')
        if created_by is not None and not self.is_valid_email(created_by):
            errors.append('createdBy must be a valid email address')

        if errors:
            raise ValidationError(errors)

        # Initial status goes through the same rule as later updates
        check_initial_status(status)

        return EventRecord(
            id=event_id or str(uuid.uuid4()),
            title=title.strip(),
            start_at=start_at,
            end_at=end_at,
            location=location.strip(),
            status=status,
            updated_at=now,
            internal_notes=internal_notes,
            created_by=created_by
        )

    def parse_update(self, payload: Dict[str, Any]) -> EventUpdate:
        """
        Extract the accepted fields of an update payload.

        Keys other than ``status`` and ``internalNotes`` are ignored.

        Raises:
            ValidationError: If a field has the wrong type or the update
                carries no change
        """
        if not isinstance(payload, dict):
            raise ValidationError(['Request body must be a JSON object'])

        errors: List[str] = []
        status = None
        if payload.get('status') is not None:
            status = self.parse_status(payload['status'], errors)

        internal_notes = payload.get('internalNotes')
        if internal_notes is not None and not isinstance(internal_notes, str):
            errors.append('internalNotes must be a string')

        if errors:
            raise ValidationError(errors)

        update = EventUpdate(status=status, internal_notes=internal_notes)
        if update.is_empty:
            raise ValidationError(
                ['Update must contain status or internalNotes']
            )
        return update

    def apply_update(
        self,
        record: EventRecord,
        update: EventUpdate,
        now: Optional[datetime] = None
    ) -> EventRecord:
        """
        Apply a partial change to a record.

        Pure function: the record passed in is left untouched.

        Raises:
            InvalidTransition: If the record is terminal or the status
                change is not allowed
        """
        if update.status is not None:
            check_transition(record.status, update.status)
        else:
            check_mutable(record.status)

        changes: Dict[str, Any] = {'updated_at': now or utc_now()}
        if update.status is not None:
            changes['status'] = update.status
        if update.internal_notes is not None:
            changes['internal_notes'] = update.internal_notes
        return replace(record, **changes)

    def normalize_imported(self, item: ImportedEvent) -> Dict[str, Any]:
        """
        Turn a scraped calendar item into a creation payload.

        Args:
            item: Raw ImportedEvent

        Returns:
            Payload accepted by ``build_event``

        Raises:
            ValidationError: If required fields are missing or unparseable
        """
        if not self._validate_required_fields(item):
            raise ValidationError(
                [f"Imported event '{item.title}' is missing required fields"]
            )

        normalized_date = self._normalize_date(item.date)
        if not normalized_date:
            raise ValidationError(
                [f"Invalid date format for event '{item.title}': {item.date}"]
            )

        normalized_start_time = self._normalize_time(item.start_time)
        if not normalized_start_time:
            raise ValidationError(
                [f"Invalid start time format for event '{item.title}': "
                 f"{item.start_time}"]
            )

        start_at = self._combine(normalized_date, normalized_start_time)
        end_at = None
        if item.end_time:
            normalized_end_time = self._normalize_time(item.end_time)
            if normalized_end_time:
                end_at = self._combine(normalized_date, normalized_end_time)
        if end_at is None or end_at <= start_at:
            end_at = start_at + self.DEFAULT_DURATION

        payload: Dict[str, Any] = {
            'title': item.title.strip()[:self.MAX_TITLE_LENGTH],
            'startAt': start_at.isoformat(),
            'endAt': end_at.isoformat(),
            'location': item.location,
        }
        if item.status:
            payload['status'] = item.status.strip().upper()
        return payload

    def parse_status(self, value: Any, errors: List[str]) -> Optional[EventStatus]:
        """Parse a status name, appending a message to ``errors`` on failure."""
        try:
            return EventStatus(str(value).strip().upper())
        except ValueError:
            errors.append(
                'Status must be one of: '
                + ', '.join(s.value for s in EventStatus)
            )
            return None

    def is_valid_email(self, value: Any) -> bool:
        return isinstance(value, str) and bool(EMAIL_PATTERN.match(value))

    def generate_event_id(self, title: str, date: str, time: str) -> str:
        """
        Generate a stable identifier for an imported event.

        Args:
            title: Event title
            date: Event date (ISO 8601 format)
            time: Event start time (24-hour format)

        Returns:
            SHA256 hex digest of ``title|date|time``
        """
        composite = f"{title}|{date}|{time}"
        return hashlib.sha256(composite.encode('utf-8')).hexdigest()

    def import_key(self, payload: Dict[str, Any]) -> str:
        """Identifier for a normalized import payload."""
        start_at = parse_timestamp(payload['startAt'])
        return self.generate_event_id(
            title=payload['title'],
            date=start_at.strftime('%Y-%m-%d'),
            time=start_at.strftime('%H:%M')
        )

    def _validate_title(self, title: Any) -> List[str]:
        errors = []
        if not isinstance(title, str) or not title.strip():
            errors.append('Title cannot be empty')
        elif len(title.strip()) > self.MAX_TITLE_LENGTH:
            errors.append(
                f"Title cannot exceed {self.MAX_TITLE_LENGTH} characters"
            )
        return errors

    def _parse_field(
        self, value: Any, name: str, errors: List[str]
    ) -> Optional[datetime]:
        try:
            return parse_timestamp(value)
        except (TypeError, ValueError):
            errors.append(f"{name} must be a valid ISO 8601 datetime")
            return None

    def _validate_required_fields(self, item: ImportedEvent) -> bool:
        """
        Validate that required fields are present and non-empty.

        Args:
            item: ImportedEvent to validate

        Returns:
            True if valid, False otherwise
        """
        if not item.title or not item.title.strip():
            logger.warning("Imported event missing required field: title")
            return False

        if not item.date or not item.date.strip():
            logger.warning(
                f"Imported event '{item.title}' missing required field: date"
            )
            return False

        if not item.start_time or not item.start_time.strip():
            logger.warning(
                f"Imported event '{item.title}' missing required field: "
                f"start_time"
            )
            return False

        return True

    def _normalize_date(self, date_str: str) -> Optional[str]:
        """
        Normalize date to ISO 8601 format (YYYY-MM-DD).

        Args:
            date_str: Date string in various formats

        Returns:
            ISO 8601 formatted date string or None if parsing fails
        """
        date_formats = [
            '%Y-%m-%d',      # ISO 8601
            '%m/%d/%Y',      # US format
            '%m-%d-%Y',      # US format with dashes
            '%B %d, %Y',     # Full month name
            '%b %d, %Y',     # Abbreviated month name
            '%Y/%m/%d',      # Alternative ISO format
        ]

        for fmt in date_formats:
            try:
                date_obj = datetime.strptime(date_str.strip(), fmt)
                return date_obj.strftime('%Y-%m-%d')
            except ValueError:
                continue

        return None

    def _normalize_time(self, time_str: str) -> Optional[str]:
        """
        Normalize time to 24-hour format (HH:MM).

        Args:
            time_str: Time string in various formats

        Returns:
            24-hour formatted time string or None if parsing fails
        """
        time_formats = [
            '%H:%M',         # 24-hour format
            '%I:%M %p',      # 12-hour format with AM/PM
            '%I:%M%p',       # 12-hour format without space
            '%H:%M:%S',      # 24-hour with seconds
            '%I:%M:%S %p',   # 12-hour with seconds and AM/PM
        ]

        time_str = time_str.strip()

        for fmt in time_formats:
            try:
                time_obj = datetime.strptime(time_str, fmt)
                return time_obj.strftime('%H:%M')
            except ValueError:
                continue

        return None

    def _combine(self, date_str: str, time_str: str) -> datetime:
        return datetime.strptime(
            f"{date_str} {time_str}", '%Y-%m-%d %H:%M'
        ).replace(tzinfo=timezone.utc)

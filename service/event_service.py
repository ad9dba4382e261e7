"""Event service: the operations behind the HTTP and scheduled entry points."""
import logging
import threading
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional

from processor.errors import InvalidTransition, ServiceError, ValidationError
from processor.event_processor import EventProcessor
from processor.models import (
    EventRecord,
    ImportedEvent,
    ImportResult,
    PublicEvent,
    utc_now,
)
from query.engine import DEFAULT_LIMIT, QueryEngine, QueryResult, parse_query_params
from service.notifier import EventNotifier
from storage.event_store import EventStore
from summary.cache import SummaryCache, fingerprint
from summary.delivery import SummaryDelivery, SummaryStream
from summary.generator import SummaryGenerator

logger = logging.getLogger(__name__)


class EventService:
    """Creates, updates, queries, imports and summarizes events."""

    def __init__(
        self,
        store: EventStore,
        cache: SummaryCache,
        generator: Optional[SummaryGenerator] = None,
        notifier: Optional[EventNotifier] = None,
        processor: Optional[EventProcessor] = None,
        query_engine: Optional[QueryEngine] = None,
        now: Callable[[], datetime] = utc_now,
        default_limit: int = DEFAULT_LIMIT
    ):
        self.store = store
        self.cache = cache
        self.notifier = notifier or EventNotifier()
        self.processor = processor or EventProcessor()
        self.query_engine = query_engine or QueryEngine()
        self.default_limit = default_limit
        self._now = now
        self.summaries = SummaryDelivery(
            store=store,
            cache=cache,
            generator=generator or SummaryGenerator(),
            now=now
        )

    def create_event(self, payload: Mapping[str, Any]) -> EventRecord:
        """
        Validate and store a new event.

        Raises:
            ValidationError: If the payload is invalid
        """
        if not isinstance(payload, Mapping):
            raise ValidationError(['Request body must be a JSON object'])

        record = self.processor.build_event(dict(payload), now=self._now())
        self.store.add(record)
        logger.info(
            f"Event created: {record.id}",
            extra={'event_id': record.id, 'status': record.status.value}
        )
        self.notifier.event_created(record)
        return record

    def get_event(self, event_id: str) -> EventRecord:
        return self.store.require(event_id)

    def update_event(
        self, event_id: str, payload: Mapping[str, Any]
    ) -> EventRecord:
        """
        Apply a status and/or internal-notes change.

        The transition check runs inside the store's atomic update. A status
        change drops the event's cached summary.

        Raises:
            ValidationError: If the payload is malformed
            InvalidTransition: If the change is not allowed
            NotFoundError: If the event does not exist
        """
        update = self.processor.parse_update(
            dict(payload) if isinstance(payload, Mapping) else payload
        )

        try:
            updated = self.store.update(
                event_id,
                lambda current: self.processor.apply_update(
                    current, update, now=self._now()
                )
            )
        except InvalidTransition as e:
            logger.warning(
                f"Rejected update of event {event_id}: {e.details[0]}",
                extra={'event_id': event_id}
            )
            raise

        if update.status is not None:
            logger.info(
                f"Event {event_id} transitioned to {updated.status.value}",
                extra={'event_id': event_id, 'status': updated.status.value}
            )
            self.invalidate_summary(updated)
            self.notifier.status_changed(updated)

        return updated

    def invalidate_summary(self, record: EventRecord) -> bool:
        """Drop any cached summary for the record's public fields."""
        return self.cache.invalidate(fingerprint(record))

    def query_events(
        self, params: Optional[Mapping[str, Any]] = None
    ) -> QueryResult[EventRecord]:
        """
        Private query over all events.

        Raises:
            ValidationError: If a query parameter is malformed
        """
        query = parse_query_params(
            params, allow_status=True, default_limit=self.default_limit
        )
        return self.query_engine.run(self.store.snapshot(), query)

    def query_public_events(
        self, params: Optional[Mapping[str, Any]] = None
    ) -> QueryResult[PublicEvent]:
        """
        Public query: PUBLISHED and CANCELLED events only, redacted.

        Raises:
            ValidationError: If a query parameter is malformed
        """
        query = parse_query_params(
            params, allow_status=False, default_limit=self.default_limit
        )
        return self.query_engine.run_public(
            self.store.snapshot(), query, now=self._now()
        )

    def open_summary(
        self, event_id: str, cancel: Optional[threading.Event] = None
    ) -> SummaryStream:
        """
        Start a summary stream for a public event.

        Raises:
            NotFoundError: If the event is unknown or not public
        """
        return self.summaries.open(event_id, cancel=cancel)

    def import_events(self, items: List[ImportedEvent]) -> ImportResult:
        """
        Import a batch of calendar items.

        New items are created; items seen before are matched by their
        import key and only their status is carried over, through the same
        transition rule as interactive updates. A failing item is recorded
        and the batch continues.

        Args:
            items: Scraped calendar items

        Returns:
            ImportResult with created/updated/skipped counts and errors
        """
        result = ImportResult()

        for item in items:
            try:
                outcome = self._import_item(item)
                if outcome == 'created':
                    result.created += 1
                elif outcome == 'updated':
                    result.updated += 1
                else:
                    result.skipped += 1
            except ServiceError as e:
                reason = '; '.join(e.details) if e.details else e.message
                error_msg = f"Failed to import event '{item.title}': {reason}"
                logger.warning(error_msg)
                result.errors.append(error_msg)

        logger.info(
            f"Import complete: {result.created} created, "
            f"{result.updated} updated, {result.skipped} skipped, "
            f"{len(result.errors)} errors"
        )
        return result


    def _import_item(self, item: ImportedEvent) -> str:
        payload = self.processor.normalize_imported(item)
        event_id = self.processor.import_key(payload)
        existing = self.store.get(event_id)

        if existing is None:
            record = self.processor.build_event(
                payload, now=self._now(), event_id=event_id
            )
            self.store.add(record)
            logger.info(
                f"Imported event created: {record.id}",
                extra={'event_id': record.id, 'status': record.status.value}
            )
            self.notifier.event_created(record)
            return 'created'

        if 'status' not in payload:
            return 'skipped'

        errors: List[str] = []
        requested = self.processor.parse_status(payload['status'], errors)
        if errors:
            raise ValidationError(errors)
        if requested == existing.status:
            return 'skipped'

        self.update_event(event_id, {'status': requested.value})
        return 'updated'

"""Thread-safe in-memory store of event records."""
import logging
import threading
from typing import Callable, Dict, List, Optional

from processor.errors import NotFoundError, ValidationError
from processor.models import EventRecord

logger = logging.getLogger(__name__)


class EventStore:
    """
    Shared collection of event records.

    Records are immutable values; every write replaces a whole record under
    the lock, so readers only ever see complete records. Writes to one id
    are serialized by a per-id lock, and the persistence backend is called
    under that lock only, so a slow write never blocks readers. A record is
    written to the backend before it becomes visible in memory, so a failed
    write leaves the store unchanged.
    """

    def __init__(self, persistence=None):
        """
        Initialize the store.

        Args:
            persistence: Optional backend with ``put_event(record)`` and
                ``get_all_events()`` (e.g. DynamoDBManager)
        """
        self._lock = threading.RLock()
        self._events: Dict[str, EventRecord] = {}
        self._write_locks: Dict[str, threading.Lock] = {}
        self.persistence = persistence

    def load(self) -> int:
        """
        Hydrate the store from the persistence backend.

        Returns:
            Number of records loaded
        """
        if self.persistence is None:
            return 0

        records = self.persistence.get_all_events()
        with self._lock:
            self._events.update(records)
        logger.info(f"Loaded {len(records)} events into the event store")
        return len(records)

    def add(self, record: EventRecord) -> EventRecord:
        """
        Insert a new record.

        Raises:
            ValidationError: If a record with the same id already exists
        """
        with self._write_lock(record.id):
            if self.get(record.id) is not None:
                raise ValidationError([f"Event with id {record.id} already exists"])
            self._persist(record)
            with self._lock:
                self._events[record.id] = record
        return record

    def get(self, event_id: str) -> Optional[EventRecord]:
        with self._lock:
            return self._events.get(event_id)

    def require(self, event_id: str) -> EventRecord:
        """
        Fetch a record by id.

        Raises:
            NotFoundError: If the id does not resolve
        """
        record = self.get(event_id)
        if record is None:
            raise NotFoundError(f"Event with id {event_id} not found")
        return record

    def update(
        self,
        event_id: str,
        mutate: Callable[[EventRecord], EventRecord]
    ) -> EventRecord:
        """
        Atomically replace a record with ``mutate(current)``.

        The mutation runs under the id's write lock, so validation inside
        it sees the same record that gets replaced. Errors raised by
        ``mutate`` leave the store unchanged.

        Returns:
            The new record

        Raises:
            NotFoundError: If the id does not resolve
        """
        with self._write_lock(event_id):
            current = self.require(event_id)
            updated = mutate(current)
            if updated.id != current.id:
                raise ValueError("Event identifier cannot change")
            self._persist(updated)
            with self._lock:
                self._events[event_id] = updated
        return updated

    def snapshot(self) -> List[EventRecord]:
        """Return the current records in insertion order."""
        with self._lock:
            return list(self._events.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def _write_lock(self, event_id: str) -> threading.Lock:
        with self._lock:
            return self._write_locks.setdefault(event_id, threading.Lock())

    def _persist(self, record: EventRecord) -> None:
        if self.persistence is not None:
            self.persistence.put_event(record)

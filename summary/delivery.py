"""Summary delivery: cache lookup, streamed generation and SSE framing."""
import logging
import threading
from contextlib import closing
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterator, Optional

from processor.errors import NotFoundError
from processor.models import PublicEvent, to_public_event, utc_now
from storage.event_store import EventStore
from summary.cache import SummaryCache, fingerprint
from summary.generator import SummaryGenerator

logger = logging.getLogger(__name__)

CACHE_HEADER = 'X-Summary-Cache'
DONE_FRAME = 'event: done\ndata: \n\n'
ERROR_FRAME = 'event: error\ndata: Failed to generate summary\n\n'


class CacheStatus(str, Enum):
    HIT = 'HIT'
    MISS = 'MISS'


def format_sse(data: str, event: Optional[str] = None) -> str:
    """
    Frame a payload as one server-sent event.

    Multi-line payloads become one ``data:`` line per line.
    """
    lines = []
    if event:
        lines.append(f"event: {event}")
    for line in data.split('\n'):
        lines.append(f"data: {line}")
    return '\n'.join(lines) + '\n\n'


class SummaryStream:
    """
    One summary request, ready to be drained by the caller.

    The cache status is fixed when the stream is opened, before any body
    is produced. A stream can be consumed once.
    """

    def __init__(
        self,
        event: PublicEvent,
        key: str,
        cached_summary: Optional[str],
        cache: SummaryCache,
        generator: SummaryGenerator,
        cancel: Optional[threading.Event] = None,
        generation: Optional[int] = None
    ):
        self.event = event
        self.key = key
        self._generation = generation
        self._cached_summary = cached_summary
        self._cache = cache
        self._generator = generator
        self._cancel = cancel or threading.Event()
        self._consumed = False
        self.completed = False

    @property
    def cache_status(self) -> CacheStatus:
        if self._cached_summary is not None:
            return CacheStatus.HIT
        return CacheStatus.MISS

    @property
    def headers(self) -> Dict[str, str]:
        return {
            'Content-Type': 'text/event-stream',
            'Cache-Control': 'no-cache, no-transform',
            'Connection': 'keep-alive',
            CACHE_HEADER: self.cache_status.value,
        }

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Stop generation at the next fragment boundary or delay."""
        self._cancel.set()

    def close(self) -> None:
        """Release the stream when the client goes away; nothing is cached."""
        self._cancel.set()

    def fragments(self) -> Iterator[str]:
        """
        Yield the summary text.

        On a hit the whole cached text is yielded once. On a miss the
        generator's fragments are passed through as they are produced and
        the assembled text is cached only after the last one, and only if
        the key was not invalidated while generating. A cancelled, closed or
        failed stream caches nothing.
        """
        if self._consumed:
            raise RuntimeError("Summary stream has already been consumed")
        self._consumed = True

        if self._cached_summary is not None:
            yield self._cached_summary
            self.completed = True
            return

        parts = []
        with closing(self._generator.stream(self.event, self._cancel)) as source:
            for fragment in source:
                parts.append(fragment)
                yield fragment

        if self._cancel.is_set():
            logger.info(f"Summary stream cancelled for event {self.event.id}")
            return

        stored = self._cache.set(
            self.key, ''.join(parts), generation=self._generation
        )
        self.completed = True
        if stored:
            logger.info(
                f"Summary generated and cached for event {self.event.id}",
                extra={'fragments': len(parts)}
            )

    def events(self) -> Iterator[str]:
        """
        Yield server-sent event frames.

        Fragments are sent as ``data:`` frames followed by ``event: done``.
        A failure after streaming started ends with ``event: error``.
        """
        try:
            with closing(self.fragments()) as fragments:
                for fragment in fragments:
                    yield format_sse(fragment)
        except Exception as e:
            logger.error(
                f"Summary generation failed for event {self.event.id}: {e}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            yield ERROR_FRAME
            return

        if self.completed:
            yield DONE_FRAME


class SummaryDelivery:
    """Resolves summary requests against the store, cache and generator."""

    def __init__(
        self,
        store: EventStore,
        cache: SummaryCache,
        generator: SummaryGenerator,
        now: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.cache = cache
        self.generator = generator
        self._now = now

    def open(
        self, event_id: str, cancel: Optional[threading.Event] = None
    ) -> SummaryStream:
        """
        Start a summary request.

        Args:
            event_id: Identifier of the event to summarize
            cancel: Optional flag the transport sets when the client goes away

        Returns:
            SummaryStream with the cache status already decided

        Raises:
            NotFoundError: If the event is unknown or not publicly visible
        """
        record = self.store.get(event_id)
        if record is None:
            raise NotFoundError(f"Event with id {event_id} not found")

        public_event = to_public_event(record, self._now())
        if public_event is None:
            raise NotFoundError('Event is not publicly available')

        key = fingerprint(public_event)
        generation = self.cache.generation(key)
        cached_summary = self.cache.get(key)
        stream = SummaryStream(
            event=public_event,
            key=key,
            cached_summary=cached_summary,
            cache=self.cache,
            generator=self.generator,
            cancel=cancel,
            generation=generation
        )
        logger.info(
            f"Summary cache {stream.cache_status.value} for event {event_id}",
            extra={'cache_stats': self.cache.stats()}
        )
        return stream

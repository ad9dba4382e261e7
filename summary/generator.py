"""Deterministic, incrementally streamed event summaries."""
import logging
import math
import threading
from typing import Iterator, List, Optional

from processor.models import EventStatus, PublicEvent

logger = logging.getLogger(__name__)


class SummaryGenerator:
    """
    Offline stand-in for a model call.

    The text depends only on the public projection. It is released as word
    groups of 2 to 5 words, each after a short synthetic delay, so a reader
    sees it arrive progressively.
    """

    MIN_FRAGMENT_WORDS = 2
    MAX_FRAGMENT_WORDS = 5
    BASE_DELAY = 0.05
    DELAY_STEP = 0.01

    def __init__(self, delay_scale: float = 1.0):
        """
        Initialize the generator.

        Args:
            delay_scale: Multiplier on the per-fragment delay; 0 disables it
        """
        if delay_scale < 0:
            raise ValueError("delay_scale must not be negative")
        self.delay_scale = delay_scale

    def compose(self, event: PublicEvent) -> str:
        """Build the full summary text for an event."""
        start = event.start_at
        duration_hours = math.ceil(
            (event.end_at - start).total_seconds() / 3600
        )
        hours = 'hour' if duration_hours == 1 else 'hours'

        date_str = f"{start:%A}, {start:%B} {start.day}, {start.year}"
        time_str = start.strftime('%I:%M %p')

        if event.status == EventStatus.CANCELLED:
            closing = 'This event has been cancelled.'
        elif event.is_upcoming:
            closing = 'This is an upcoming event.'
        else:
            closing = 'This event has already taken place.'

        sentences = [
            f"{event.title} is scheduled to take place at {event.location} "
            f"on {date_str} starting at {time_str} UTC.",
            f"The event is expected to last approximately "
            f"{duration_hours} {hours}.",
            closing,
            "Attendees can expect a well-organized event with comprehensive "
            "planning and execution.",
            "The location provides excellent facilities for the event "
            "activities.",
            "For more information, please contact the event organizers.",
        ]
        return ' '.join(' '.join(sentence.split()) for sentence in sentences)

    def fragments(self, text: str) -> List[str]:
        """
        Split text into word groups.

        Group size cycles through 2..5 words, one step per fragment. Every
        fragment but the last keeps its trailing space, so joining the
        fragments with no separator gives back ``text``.
        """
        words = text.split(' ')
        span = self.MAX_FRAGMENT_WORDS - self.MIN_FRAGMENT_WORDS + 1
        chunks = []
        i = 0
        while i < len(words):
            size = self.MIN_FRAGMENT_WORDS + (len(chunks) % span)
            chunk = ' '.join(words[i:i + size])
            i += size
            if i < len(words):
                chunk += ' '
            chunks.append(chunk)
        return chunks

    def fragment_delay(self, fragment: str) -> float:
        """Synthetic latency for a fragment, in seconds (0.05 to 0.14)."""
        delay = self.BASE_DELAY + (len(fragment) % 10) * self.DELAY_STEP
        return delay * self.delay_scale

    def stream(
        self,
        event: PublicEvent,
        cancel: Optional[threading.Event] = None
    ) -> Iterator[str]:
        """
        Lazily yield the summary fragment by fragment.

        Each call returns a fresh generator. Setting ``cancel`` interrupts
        the current delay and ends the stream without further fragments.

        Args:
            event: Public projection to summarize
            cancel: Optional cancellation flag

        Yields:
            Summary fragments in order
        """
        cancel = cancel or threading.Event()
        for fragment in self.fragments(self.compose(event)):
            delay = self.fragment_delay(fragment)
            if delay > 0:
                if cancel.wait(delay):
                    logger.debug(f"Summary generation cancelled for {event.id}")
                    return
            elif cancel.is_set():
                logger.debug(f"Summary generation cancelled for {event.id}")
                return
            yield fragment

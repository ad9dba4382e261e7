"""JSON event feed client used for batch event imports."""
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import requests

from processor.models import ImportedEvent

logger = logging.getLogger(__name__)

# Feed keys for each ImportedEvent field; title and date are mandatory
FEED_FIELDS = {
    'title': 'title',
    'date': 'date',
    'start_time': 'startTime',
    'end_time': 'endTime',
    'location': 'location',
    'status': 'status',
    'url': 'url',
}


def parse_feed_items(data: Any) -> List[ImportedEvent]:
    """
    Turn a decoded feed document into imported events.

    Accepts either a list of items or an object with an ``events`` list.
    Items that are not objects or lack a title or date are skipped with a
    warning; the rest of the batch is kept.

    Raises:
        ValueError: If the document has no list of items
    """
    if isinstance(data, dict):
        data = data.get('events')
    if not isinstance(data, list):
        raise ValueError("Event feed must be a list or an object with an 'events' list")

    events = []
    for index, item in enumerate(data):
        event = _parse_item(item)
        if event is None:
            logger.warning(f"Skipping malformed feed item at index {index}")
            continue
        events.append(event)
    return events


def _parse_item(item: Any) -> Optional[ImportedEvent]:
    if not isinstance(item, dict):
        return None

    values: Dict[str, Optional[str]] = {}
    for attr, key in FEED_FIELDS.items():
        raw = item.get(key)
        values[attr] = str(raw).strip() if raw is not None else None

    if not values['title'] or not values['date']:
        return None

    return ImportedEvent(
        title=values['title'],
        date=values['date'],
        start_time=values['start_time'] or '',
        end_time=values['end_time'] or None,
        location=values['location'] or '',
        status=values['status'] or None,
        url=values['url'] or None
    )


class EventFeedClient:
    """Client for an HTTP endpoint serving upcoming events as JSON."""

    MAX_RETRIES = 3
    BASE_DELAY = 1  # seconds

    def __init__(self, feed_url: str, timeout: int = 30):
        """
        Initialize the feed client.

        Args:
            feed_url: URL of the JSON event feed
            timeout: HTTP request timeout in seconds (default: 30)
        """
        self.feed_url = feed_url
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers['Accept'] = 'application/json'

    def fetch_events(self, days_ahead: int = 90) -> List[ImportedEvent]:
        """
        Fetch events starting within the next ``days_ahead`` days.

        Raises:
            requests.RequestException: If every attempt fails
            ValueError: If the response is not a usable feed document
        """
        start_date = datetime.now(timezone.utc).date()
        params = {
            'start': start_date.isoformat(),
            'end': (start_date + timedelta(days=days_ahead)).isoformat()
        }
        logger.info(f"Fetching event feed for {days_ahead} days ahead")

        response = self._get_with_retry(params)
        try:
            document = response.json()
        except ValueError as e:
            raise ValueError(f"Event feed returned invalid JSON: {e}") from e

        events = parse_feed_items(document)
        logger.info(f"Fetched {len(events)} events from feed")
        return events

    def _get_with_retry(self, params: Dict[str, str]) -> requests.Response:
        attempt = 0
        while True:
            attempt += 1
            try:
                response = self.session.get(
                    self.feed_url, params=params, timeout=self.timeout
                )
                response.raise_for_status()
                return response
            except requests.RequestException as e:
                if attempt >= self.MAX_RETRIES:
                    logger.error(
                        f"Event feed unavailable after {attempt} attempts: {e}"
                    )
                    raise
                delay = self.BASE_DELAY * 2 ** (attempt - 1)
                logger.warning(
                    f"Event feed request failed ({attempt}/{self.MAX_RETRIES}), "
                    f"retrying in {delay}s: {e}"
                )
                time.sleep(delay)

"""Filter, sort and paginate engine over event records."""
import logging
import math
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from typing import Any, Dict, FrozenSet, Generic, Iterable, List, Mapping, Optional, TypeVar

from processor.errors import ValidationError
from processor.models import (
    PUBLIC_STATUSES,
    EventRecord,
    EventStatus,
    PublicEvent,
    to_public_event,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


@dataclass(frozen=True)
class EventQuery:
    """Filter specification. A criterion left as None is not applied."""
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    locations: Optional[List[str]] = None
    statuses: Optional[FrozenSet[EventStatus]] = None
    page: int = 1
    limit: int = DEFAULT_LIMIT


@dataclass(frozen=True)
class Pagination:
    page: int
    limit: int
    total: int
    total_pages: int

    def to_dict(self) -> Dict[str, int]:
        return {
            'page': self.page,
            'limit': self.limit,
            'total': self.total,
            'totalPages': self.total_pages,
        }


@dataclass(frozen=True)
class QueryResult(Generic[T]):
    data: List[T]
    pagination: Pagination

    def to_dict(self) -> Dict[str, Any]:
        return {
            'data': [item.to_dict() for item in self.data],
            'pagination': self.pagination.to_dict(),
        }


class QueryEngine:
    """Applies an EventQuery to a snapshot of event records."""

    def __init__(self, max_limit: int = MAX_LIMIT):
        if max_limit < 1:
            raise ValueError("max_limit must be at least 1")
        self.max_limit = max_limit

    def run(
        self, records: Iterable[EventRecord], query: EventQuery
    ) -> QueryResult[EventRecord]:
        """
        Filter, sort ascending by start time and slice to the requested page.

        Ties on start time are broken by identifier so the order is total.

        Args:
            records: Snapshot of event records
            query: Filter specification

        Returns:
            QueryResult with the page of records and pagination metadata

        Raises:
            ValidationError: If page or limit is below 1
        """
        page, limit = self._page_window(query)

        matches = [record for record in records if self._matches(record, query)]
        matches.sort(key=lambda record: (record.start_at, record.id))

        total = len(matches)
        start = (page - 1) * limit
        data = matches[start:start + limit]

        logger.debug(
            f"Query matched {total} events, returning {len(data)} "
            f"(page {page}, limit {limit})"
        )
        return QueryResult(
            data=data,
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                total_pages=math.ceil(total / limit)
            )
        )

    def run_public(
        self,
        records: Iterable[EventRecord],
        query: EventQuery,
        now: Optional[datetime] = None
    ) -> QueryResult[PublicEvent]:
        """
        Run a query restricted to publicly visible events.

        Any status filter on the incoming query is replaced by
        {PUBLISHED, CANCELLED}; every result goes through the public
        projection and records without one are dropped.
        """
        result = self.run(records, replace(query, statuses=PUBLIC_STATUSES))

        public_events = []
        for record in result.data:
            projected = to_public_event(record, now)
            if projected is None:
                logger.warning(
                    f"Dropping non-public event {record.id} from public results"
                )
                continue
            public_events.append(projected)

        return QueryResult(data=public_events, pagination=result.pagination)

    def _page_window(self, query: EventQuery):
        errors = []
        if query.page < 1:
            errors.append('page must be a positive integer')
        if query.limit < 1:
            errors.append('limit must be a positive integer')
        if errors:
            raise ValidationError(errors)
        return query.page, min(query.limit, self.max_limit)

    def _matches(self, record: EventRecord, query: EventQuery) -> bool:
        event_date = record.start_at.astimezone(timezone.utc).date()
        if query.date_from is not None and event_date < query.date_from:
            return False
        if query.date_to is not None and event_date > query.date_to:
            return False

        if query.locations:
            location = record.location.casefold()
            if not any(loc.casefold() in location for loc in query.locations):
                return False

        if query.statuses and record.status not in query.statuses:
            return False

        return True


def parse_query_params(
    params: Optional[Mapping[str, Any]],
    allow_status: bool = True,
    default_limit: int = DEFAULT_LIMIT
) -> EventQuery:
    """
    Build an EventQuery from HTTP query-string parameters.

    Args:
        params: dateFrom, dateTo (YYYY-MM-DD), locations, status
            (comma-separated), page, limit
        allow_status: False on the public endpoint, where ``status`` is ignored
        default_limit: Page size used when ``limit`` is absent

    Returns:
        EventQuery

    Raises:
        ValidationError: If any parameter is malformed
    """
    params = params or {}
    errors: List[str] = []

    date_from = _parse_date(params.get('dateFrom'), 'dateFrom', errors)
    date_to = _parse_date(params.get('dateTo'), 'dateTo', errors)
    if date_from and date_to and date_from > date_to:
        errors.append('dateFrom must not be after dateTo')

    locations = _split_csv(params.get('locations'))

    statuses = None
    if allow_status:
        names = _split_csv(params.get('status'))
        if names:
            parsed = set()
            for name in names:
                try:
                    parsed.add(EventStatus(name.upper()))
                except ValueError:
                    errors.append(
                        f"Unknown status '{name}'; must be one of: "
                        + ', '.join(s.value for s in EventStatus)
                    )
            statuses = frozenset(parsed)

    page = _parse_int(params.get('page'), 'page', 1, errors)
    limit = _parse_int(params.get('limit'), 'limit', default_limit, errors)

    if errors:
        raise ValidationError(errors)

    return EventQuery(
        date_from=date_from,
        date_to=date_to,
        locations=locations,
        statuses=statuses,
        page=page,
        limit=limit
    )


def _split_csv(value: Any) -> Optional[List[str]]:
    if value is None:
        return None
    items = [part.strip() for part in str(value).split(',') if part.strip()]
    return items or None


def _parse_date(value: Any, name: str, errors: List[str]) -> Optional[date]:
    if value is None or str(value).strip() == '':
        return None
    try:
        return datetime.strptime(str(value).strip(), '%Y-%m-%d').date()
    except ValueError:
        errors.append(f"{name} must be a date in YYYY-MM-DD format")
        return None


def _parse_int(value: Any, name: str, default: int, errors: List[str]) -> int:
    if value is None or str(value).strip() == '':
        return default
    try:
        parsed = int(str(value).strip())
    except ValueError:
        errors.append(f"{name} must be a positive integer")
        return default
    if parsed < 1:
        errors.append(f"{name} must be a positive integer")
    return parsed

"""AWS Lambda handler for the event lifecycle and summary service."""
import json
import logging
import re
import threading
import time
from typing import Any, Dict, Iterator, Optional, Tuple

from config import ServiceConfig
from feeds.event_feed import EventFeedClient, parse_feed_items
from processor.errors import InternalError, ServiceError, ValidationError
from query.engine import QueryEngine
from service.event_service import EventService
from service.notifier import EventNotifier
from storage.dynamodb_manager import DynamoDBManager
from storage.event_store import EventStore
from summary.cache import SummaryCache
from summary.generator import SummaryGenerator

# Attributes every LogRecord has; anything else came in through ``extra``
_RESERVED_LOG_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in _RESERVED_LOG_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


logger = logging.getLogger(__name__)

_service: Optional[EventService] = None
_service_lock = threading.Lock()

_ROUTES = [
    ('GET', re.compile(r'^/events/?$'), 'list_events'),
    ('POST', re.compile(r'^/events/?$'), 'create_event'),
    ('GET', re.compile(r'^/events/(?P<event_id>[^/]+)/?$'), 'get_event'),
    ('PATCH', re.compile(r'^/events/(?P<event_id>[^/]+)/?$'), 'update_event'),
    ('GET', re.compile(r'^/public/events/?$'), 'list_public_events'),
    ('GET', re.compile(r'^/public/events/(?P<event_id>[^/]+)/summary/?$'), 'summary'),
]


def build_service(config: ServiceConfig) -> EventService:
    """
    Wire the service and its shared collaborators from configuration.

    Args:
        config: Service configuration

    Returns:
        EventService backed by a store hydrated from DynamoDB when a table
        is configured
    """
    persistence = None
    if config.table_name:
        persistence = DynamoDBManager(table_name=config.table_name)

    store = EventStore(persistence=persistence)
    store.load()

    return EventService(
        store=store,
        cache=SummaryCache(ttl_seconds=config.cache_ttl_seconds),
        generator=SummaryGenerator(delay_scale=config.summary_delay_scale),
        notifier=EventNotifier(topic_arn=config.notification_topic_arn),
        query_engine=QueryEngine(max_limit=config.max_limit),
        default_limit=config.default_limit
    )


def get_service(config: ServiceConfig) -> EventService:
    """Return the service for this container, building it on first use."""
    global _service
    with _service_lock:
        if _service is None:
            _service = build_service(config)
        return _service


def reset_service() -> None:
    """Forget the cached service (used between tests)."""
    global _service
    with _service_lock:
        _service = None


def stream_summary(
    service: EventService,
    event_id: str,
    cancel: Optional[threading.Event] = None
) -> Tuple[int, Dict[str, str], Iterator[str]]:
    """
    Resolve a summary request for a streaming-capable transport.

    Unknown or non-public events fail here, before any body is produced.

    Returns:
        (status code, headers, iterator of SSE frames); the headers carry
        ``X-Summary-Cache`` and must be sent before the first frame

    Raises:
        NotFoundError: If the event is unknown or not public
    """
    stream = service.open_summary(event_id, cancel=cancel)
    return 200, stream.headers, stream.events()


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function.

    Scheduled EventBridge invocations run a calendar import; everything
    else is treated as an API Gateway proxy request.

    Args:
        event: API Gateway proxy event or EventBridge event payload
        context: Lambda context object

    Returns:
        Response dict with statusCode, headers and body
    """
    config = ServiceConfig.from_env()
    setup_logging(config.log_level)

    if event.get('source') == 'aws.events':
        return run_calendar_import(config, event.get('detail'))

    method, path = _request_line(event)
    start_time = time.time()
    logger.info(f"Request started: {method} {path}")

    try:
        service = get_service(config)
        response = _dispatch(service, method, path, event)
    except ServiceError as e:
        logger.info(
            f"Request rejected: {e.code}",
            extra={'status_code': e.status_code, 'error_type': type(e).__name__}
        )
        response = _json_response(e.status_code, e.to_response_body())
    except Exception as e:
        logger.error(
            f"Request failed: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        error = InternalError()
        response = _json_response(error.status_code, error.to_response_body())

    logger.info(
        f"Request completed: {method} {path}",
        extra={
            'status_code': response['statusCode'],
            'duration_seconds': round(time.time() - start_time, 3)
        }
    )
    return response


def run_calendar_import(
    config: ServiceConfig,
    detail: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Import events from the EventBridge detail or the configured feed.

    Items listed under ``detail['events']`` are imported as they are;
    otherwise the JSON feed at CALENDAR_FEED_URL is fetched.

    Args:
        config: Service configuration
        detail: EventBridge event detail, if any

    Returns:
        Response dict with statusCode and import statistics
    """
    start_time = time.time()
    inline = isinstance(detail, dict) and 'events' in detail
    logger.info(
        "Calendar import started",
        extra={
            'feed_url': None if inline else config.calendar_feed_url,
            'days_ahead': config.import_days_ahead,
            'timeout_seconds': config.timeout_seconds
        }
    )

    if inline:
        try:
            items = parse_feed_items(detail['events'])
        except ValueError as e:
            logger.warning(f"Calendar import rejected: {str(e)}")
            return {
                'statusCode': 400,
                'body': json.dumps({'message': str(e)})
            }
    elif not config.calendar_feed_url:
        logger.warning("Calendar import skipped: CALENDAR_FEED_URL is not set")
        return {
            'statusCode': 400,
            'body': json.dumps({'message': 'Calendar feed is not configured'})
        }

    try:
        service = get_service(config)

        try:
            if not inline:
                logger.info("Fetching events from feed")
                feed = EventFeedClient(
                    feed_url=config.calendar_feed_url,
                    timeout=config.timeout_seconds
                )
                items = feed.fetch_events(days_ahead=config.import_days_ahead)
            logger.info(f"Received {len(items)} raw events")
        except Exception as e:
            logger.error(
                f"Failed to fetch events from feed after retries: {str(e)}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            duration = time.time() - start_time
            return {
                'statusCode': 500,
                'body': json.dumps({
                    'message': 'Failed to fetch calendar events',
                    'error': str(e),
                    'error_type': type(e).__name__,
                    'duration_seconds': round(duration, 2)
                })
            }

        logger.info("Importing events")
        result = service.import_events(items)
        duration = time.time() - start_time

        logger.info(
            "Calendar import completed successfully",
            extra={
                'duration_seconds': round(duration, 2),
                'events_created': result.created,
                'events_updated': result.updated,
                'events_skipped': result.skipped,
                'errors': result.errors
            }
        )
        return {
            'statusCode': 200,
            'body': json.dumps({
                'message': 'Import completed successfully',
                'statistics': {
                    'raw_events_fetched': len(items),
                    'events_created': result.created,
                    'events_updated': result.updated,
                    'events_skipped': result.skipped,
                    'duration_seconds': round(duration, 2)
                },
                'errors': result.errors
            })
        }

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Calendar import failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'Import failed',
                'error': str(e),
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            })
        }


def _dispatch(
    service: EventService, method: str, path: str, event: Dict[str, Any]
) -> Dict[str, Any]:
    for route_method, pattern, action in _ROUTES:
        match = pattern.match(path)
        if match and route_method == method:
            return _handle(service, action, match.groupdict(), event)

    return _json_response(404, {
        'error': {'code': 'NOT_FOUND', 'message': f"No route for {method} {path}"}
    })


def _handle(
    service: EventService,
    action: str,
    path_params: Dict[str, str],
    event: Dict[str, Any]
) -> Dict[str, Any]:
    params = event.get('queryStringParameters') or {}

    if action == 'list_events':
        return _json_response(200, service.query_events(params).to_dict())

    if action == 'list_public_events':
        return _json_response(200, service.query_public_events(params).to_dict())

    if action == 'create_event':
        record = service.create_event(_parse_body(event))
        return _json_response(201, record.to_dict())

    if action == 'get_event':
        return _json_response(200, service.get_event(path_params['event_id']).to_dict())

    if action == 'update_event':
        record = service.update_event(path_params['event_id'], _parse_body(event))
        return _json_response(200, record.to_dict())

    # Buffered Lambda responses cannot stream, so the frames are drained here
    status_code, headers, frames = stream_summary(service, path_params['event_id'])
    return {
        'statusCode': status_code,
        'headers': headers,
        'body': ''.join(frames)
    }


def _request_line(event: Dict[str, Any]) -> Tuple[str, str]:
    http = (event.get('requestContext') or {}).get('http') or {}
    method = event.get('httpMethod') or http.get('method') or 'GET'
    path = event.get('path') or event.get('rawPath') or '/'
    return method.upper(), path


def _parse_body(event: Dict[str, Any]) -> Dict[str, Any]:
    body = event.get('body')
    if body is None or body == '':
        return {}
    if isinstance(body, dict):
        return body
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError:
        raise ValidationError(['Request body must be valid JSON'])
    if not isinstance(parsed, dict):
        raise ValidationError(['Request body must be a JSON object'])
    return parsed


def _json_response(
    status_code: int, body: Any, headers: Optional[Dict[str, str]] = None
) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': {'Content-Type': 'application/json', **(headers or {})},
        'body': json.dumps(body)
    }

"""Integration tests for Lambda handler."""
import json
import logging
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

import pytest

from lambda_function import (
    JsonFormatter,
    build_service,
    lambda_handler,
    reset_service,
    setup_logging,
    stream_summary,
)
from config import ServiceConfig
from processor.errors import NotFoundError
from processor.models import ImportedEvent
from summary.delivery import CACHE_HEADER, DONE_FRAME


@pytest.fixture
def mock_env():
    """Set up environment variables for testing."""
    env_vars = {
        'EVENTS_TABLE_NAME': '',
        'NOTIFICATION_TOPIC_ARN': '',
        'CALENDAR_FEED_URL': 'https://calendar.example.com/events',
        'LOG_LEVEL': 'INFO',
        'IMPORT_DAYS_AHEAD': '90',
        'TIMEOUT_SECONDS': '30',
        'SUMMARY_DELAY_SCALE': '0'
    }
    with patch.dict(os.environ, env_vars):
        reset_service()
        yield env_vars
        reset_service()


@pytest.fixture
def mock_context():
    """Create a mock Lambda context."""
    context = Mock()
    context.function_name = 'test-function'
    context.memory_limit_in_mb = 512
    context.invoked_function_arn = 'arn:aws:lambda:us-east-1:123456789012:function:test-function'
    context.aws_request_id = 'test-request-id'
    return context


@pytest.fixture
def scheduled_event():
    return {'source': 'aws.events', 'detail-type': 'Scheduled Event'}


def api_event(method, path, body=None, query=None):
    """Build an API Gateway REST (v1) proxy event."""
    return {
        'httpMethod': method,
        'path': path,
        'queryStringParameters': query,
        'body': json.dumps(body) if isinstance(body, dict) else body
    }


def new_event_body(**overrides):
    start = datetime.now(timezone.utc) + timedelta(days=10)
    body = {
        'title': 'Pottery Workshop',
        'startAt': start.isoformat(),
        'endAt': (start + timedelta(hours=2)).isoformat(),
        'location': 'Lifestyle Center',
        'internalNotes': 'Kiln booked'
    }
    body.update(overrides)
    return body


class TestApiRoutes:
    """Test cases for the HTTP routes."""

    def test_create_get_and_publish(self, mock_env, mock_context):
        created = lambda_handler(
            api_event('POST', '/events', new_event_body()), mock_context
        )
        assert created['statusCode'] == 201
        assert created['headers']['Content-Type'] == 'application/json'
        event_id = json.loads(created['body'])['id']

        fetched = lambda_handler(api_event('GET', f'/events/{event_id}'), mock_context)
        assert json.loads(fetched['body'])['status'] == 'DRAFT'

        patched = lambda_handler(
            api_event('PATCH', f'/events/{event_id}', {'status': 'PUBLISHED'}),
            mock_context
        )
        assert patched['statusCode'] == 200
        assert json.loads(patched['body'])['status'] == 'PUBLISHED'

    def test_public_listing_is_redacted(self, mock_env, mock_context):
        lambda_handler(api_event('POST', '/events', new_event_body()), mock_context)
        lambda_handler(
            api_event('POST', '/events', new_event_body(
                title='Open Mic', status='PUBLISHED'
            )),
            mock_context
        )

        response = lambda_handler(
            api_event('GET', '/public/events', query={'limit': '10'}),
            mock_context
        )

        body = json.loads(response['body'])
        assert response['statusCode'] == 200
        assert [e['title'] for e in body['data']] == ['Open Mic']
        assert 'internalNotes' not in body['data'][0]
        assert body['data'][0]['isUpcoming'] is True
        assert body['pagination'] == {
            'page': 1, 'limit': 10, 'total': 1, 'totalPages': 1
        }

    def test_private_listing_filters_by_status(self, mock_env, mock_context):
        lambda_handler(api_event('POST', '/events', new_event_body()), mock_context)

        response = lambda_handler(
            api_event('GET', '/events', query={'status': 'PUBLISHED'}),
            mock_context
        )

        assert json.loads(response['body'])['pagination']['total'] == 0

    def test_validation_error_envelope(self, mock_env, mock_context):
        response = lambda_handler(
            api_event('POST', '/events', new_event_body(title='', location='')),
            mock_context
        )

        body = json.loads(response['body'])
        assert response['statusCode'] == 400
        assert body['error']['code'] == 'VALIDATION_ERROR'
        messages = [d['message'] for d in body['error']['details']]
        assert 'Title cannot be empty' in messages
        assert 'Location cannot be empty' in messages

    def test_invalid_json_body(self, mock_env, mock_context):
        response = lambda_handler(
            api_event('POST', '/events', '{not json'), mock_context
        )

        assert response['statusCode'] == 400

    def test_invalid_transition(self, mock_env, mock_context):
        created = lambda_handler(
            api_event('POST', '/events', new_event_body(status='CANCELLED')),
            mock_context
        )
        event_id = json.loads(created['body'])['id']

        response = lambda_handler(
            api_event('PATCH', f'/events/{event_id}', {'status': 'PUBLISHED'}),
            mock_context
        )

        body = json.loads(response['body'])
        assert response['statusCode'] == 400
        assert body['error']['details'] == [
            {'message': 'Cannot transition from CANCELLED to PUBLISHED; '
                        'CANCELLED events cannot be modified'}
        ]

    def test_unknown_event(self, mock_env, mock_context):
        response = lambda_handler(api_event('GET', '/events/missing'), mock_context)

        assert response['statusCode'] == 404
        assert json.loads(response['body'])['error']['code'] == 'NOT_FOUND'

    def test_unknown_route(self, mock_env, mock_context):
        response = lambda_handler(api_event('DELETE', '/events'), mock_context)

        assert response['statusCode'] == 404

    def test_http_api_v2_event(self, mock_env, mock_context):
        event = {
            'rawPath': '/public/events',
            'requestContext': {'http': {'method': 'GET'}},
        }

        response = lambda_handler(event, mock_context)

        assert response['statusCode'] == 200

    @patch('lambda_function.get_service')
    def test_unexpected_error_is_hidden(self, mock_get_service, mock_env, mock_context):
        mock_get_service.side_effect = RuntimeError('connection string leaked')

        response = lambda_handler(api_event('GET', '/events'), mock_context)

        body = json.loads(response['body'])
        assert response['statusCode'] == 500
        assert body['error']['code'] == 'INTERNAL_ERROR'
        assert 'leaked' not in response['body']


class TestSummaryRoute:
    """Test cases for the public summary route."""

    def test_summary_miss_then_hit(self, mock_env, mock_context):
        created = lambda_handler(
            api_event('POST', '/events', new_event_body(status='PUBLISHED')),
            mock_context
        )
        event_id = json.loads(created['body'])['id']
        path = f'/public/events/{event_id}/summary'

        first = lambda_handler(api_event('GET', path), mock_context)
        second = lambda_handler(api_event('GET', path), mock_context)

        assert first['statusCode'] == 200
        assert first['headers']['Content-Type'] == 'text/event-stream'
        assert first['headers'][CACHE_HEADER] == 'MISS'
        assert second['headers'][CACHE_HEADER] == 'HIT'
        assert first['body'].endswith(DONE_FRAME)
        assert first['body'].startswith('data: Pottery Workshop ')

    def test_draft_summary_not_found(self, mock_env, mock_context):
        created = lambda_handler(
            api_event('POST', '/events', new_event_body()), mock_context
        )
        event_id = json.loads(created['body'])['id']

        response = lambda_handler(
            api_event('GET', f'/public/events/{event_id}/summary'), mock_context
        )

        assert response['statusCode'] == 404
        assert response['headers']['Content-Type'] == 'application/json'

    def test_stream_summary_resolves_before_body(self):
        service = Mock()
        service.open_summary.side_effect = NotFoundError('Event with id x not found')

        with pytest.raises(NotFoundError):
            stream_summary(service, 'x')


class TestScheduledImport:
    """Test cases for the EventBridge-triggered import."""

    @patch('lambda_function.EventFeedClient')
    def test_successful_import(
        self, mock_feed_class, mock_env, mock_context, scheduled_event
    ):
        """Test successful end-to-end import."""
        day = (datetime.now(timezone.utc) + timedelta(days=20)).strftime('%Y-%m-%d')
        mock_feed = Mock()
        mock_feed.fetch_events.return_value = [
            ImportedEvent('Test Event 1', day, '10:00 AM', '12:00 PM', 'Hall 1'),
            ImportedEvent('Test Event 2', day, '2:00 PM', '4:00 PM', 'Hall 2'),
            ImportedEvent('Broken', 'someday', '2:00 PM', None, 'Hall 3'),
        ]
        mock_feed_class.return_value = mock_feed

        response = lambda_handler(scheduled_event, mock_context)

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['message'] == 'Import completed successfully'
        assert body['statistics']['raw_events_fetched'] == 3
        assert body['statistics']['events_created'] == 2
        assert body['statistics']['events_skipped'] == 0
        assert 'duration_seconds' in body['statistics']
        assert len(body['errors']) == 1

        mock_feed_class.assert_called_once_with(
            feed_url='https://calendar.example.com/events', timeout=30
        )
        mock_feed.fetch_events.assert_called_once_with(days_ahead=90)

        listed = lambda_handler(api_event('GET', '/events'), mock_context)
        assert json.loads(listed['body'])['pagination']['total'] == 2

    @patch('lambda_function.EventFeedClient')
    def test_calendar_fetch_failure(
        self, mock_feed_class, mock_env, mock_context, scheduled_event
    ):
        """Test error handling for calendar fetch failures."""
        mock_feed = Mock()
        mock_feed.fetch_events.side_effect = Exception('Network error')
        mock_feed_class.return_value = mock_feed

        response = lambda_handler(scheduled_event, mock_context)

        assert response['statusCode'] == 500
        body = json.loads(response['body'])
        assert body['message'] == 'Failed to fetch calendar events'
        assert 'Network error' in body['error']
        assert body['error_type'] == 'Exception'
        assert 'duration_seconds' in body

    def test_import_without_feed(self, mock_env, mock_context, scheduled_event):
        with patch.dict(os.environ, {'CALENDAR_FEED_URL': ''}):
            response = lambda_handler(scheduled_event, mock_context)

        assert response['statusCode'] == 400

    @patch('lambda_function.EventFeedClient')
    @patch('lambda_function.get_service')
    def test_import_failure(
        self, mock_get_service, mock_feed_class, mock_env, mock_context,
        scheduled_event
    ):
        mock_feed_class.return_value.fetch_events.return_value = []
        mock_get_service.return_value.import_events.side_effect = Exception('boom')

        response = lambda_handler(scheduled_event, mock_context)

        assert response['statusCode'] == 500
        assert json.loads(response['body'])['message'] == 'Import failed'

    @patch('lambda_function.EventFeedClient')
    def test_import_from_event_detail(
        self, mock_feed_class, mock_env, mock_context, scheduled_event
    ):
        """Test that items in the EventBridge detail skip the feed fetch."""
        day = (datetime.now(timezone.utc) + timedelta(days=10)).strftime('%Y-%m-%d')
        scheduled_event['detail'] = {'events': [
            {'title': 'Farmers Market', 'date': day, 'startTime': '8:00 AM',
             'endTime': '11:00 AM', 'location': 'Brownwood Paddock Square'},
            {'date': day, 'location': 'No Title Hall'},
        ]}

        response = lambda_handler(scheduled_event, mock_context)

        assert response['statusCode'] == 200
        statistics = json.loads(response['body'])['statistics']
        assert statistics['raw_events_fetched'] == 1
        assert statistics['events_created'] == 1
        mock_feed_class.assert_not_called()

    def test_import_detail_without_list(self, mock_env, mock_context, scheduled_event):
        scheduled_event['detail'] = {'events': 'not a list'}

        response = lambda_handler(scheduled_event, mock_context)

        assert response['statusCode'] == 400
        assert 'events' in json.loads(response['body'])['message']


class TestBuildService:
    """Test cases for wiring the service from configuration."""

    @patch('lambda_function.DynamoDBManager')
    def test_table_configured_hydrates_store(self, mock_dynamodb_class):
        mock_dynamodb_class.return_value.get_all_events.return_value = {}

        service = build_service(ServiceConfig(table_name='events'))

        mock_dynamodb_class.assert_called_once_with(table_name='events')
        assert service.store.persistence is mock_dynamodb_class.return_value

    def test_no_table_uses_memory_only(self):
        service = build_service(ServiceConfig(default_limit=5, max_limit=50))

        assert service.store.persistence is None
        assert service.default_limit == 5
        assert service.query_engine.max_limit == 50


class TestSetupLogging:
    """Test cases for logging setup."""

    def test_setup_logging_default_level(self):
        """Test logging setup with default INFO level."""
        setup_logging()
        assert logging.getLogger().level == logging.INFO

    def test_setup_logging_debug_level(self):
        setup_logging('DEBUG')
        assert logging.getLogger().level == logging.DEBUG

    def test_setup_logging_error_level(self):
        setup_logging('ERROR')
        assert logging.getLogger().level == logging.ERROR

    def test_json_formatter_includes_extra_fields(self):
        record = logging.makeLogRecord({
            'name': 'service',
            'levelname': 'INFO',
            'msg': 'Event created: abc',
            'event_id': 'abc',
        })

        output = json.loads(JsonFormatter().format(record))

        assert output['message'] == 'Event created: abc'
        assert output['level'] == 'INFO'
        assert output['event_id'] == 'abc'

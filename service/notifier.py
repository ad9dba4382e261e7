"""Event lifecycle notifications published to SNS."""
import json
import logging
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from processor.models import EventRecord, EventStatus

logger = logging.getLogger(__name__)


class EventNotifier:
    """
    Publishes lifecycle notifications.

    Without a topic ARN notifications are only logged. Delivery failures are
    logged and never raised to the caller.
    """

    def __init__(
        self,
        topic_arn: Optional[str] = None,
        region_name: Optional[str] = None,
        sns_client=None
    ):
        self.topic_arn = topic_arn or None
        self._sns = sns_client
        if self._sns is None and self.topic_arn:
            self._sns = boto3.client('sns', region_name=region_name)

    def event_created(self, record: EventRecord) -> bool:
        return self._send('EVENT_CREATED', f"New event created: {record.title}", record)

    def status_changed(self, record: EventRecord) -> bool:
        """Notify about a record that just entered its current status."""
        if record.status == EventStatus.PUBLISHED:
            return self._send(
                'EVENT_PUBLISHED', f"Event published: {record.title}", record
            )
        if record.status == EventStatus.CANCELLED:
            return self._send(
                'EVENT_CANCELLED', f"Event cancelled: {record.title}", record
            )
        return False

    def _send(self, kind: str, message: str, record: EventRecord) -> bool:
        logger.info(message, extra={'event_id': record.id, 'notification': kind})
        if self._sns is None:
            return False

        event = record.to_dict()
        event.pop('internalNotes', None)
        payload = {
            'type': kind,
            'message': message,
            'event': event,
        }
        try:
            self._sns.publish(
                TopicArn=self.topic_arn,
                Subject=message[:100],
                Message=json.dumps(payload),
                MessageAttributes={
                    'event_type': {'DataType': 'String', 'StringValue': kind}
                }
            )
        except (BotoCoreError, ClientError) as e:
            logger.warning(
                f"Failed to publish notification for event {record.id}: {e}",
                extra={'error_type': type(e).__name__}
            )
            return False
        return True

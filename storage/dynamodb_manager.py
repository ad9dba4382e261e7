"""DynamoDB manager for event record persistence."""
import logging
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from processor.models import (
    EventRecord,
    EventStatus,
    format_timestamp,
    parse_timestamp,
)

logger = logging.getLogger(__name__)


class DynamoDBManager:
    """Manager for DynamoDB operations."""

    BATCH_SIZE = 25  # DynamoDB batch operation limit

    def __init__(self, table_name: str, region_name: Optional[str] = None):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table
            region_name: AWS region (default: from the environment)
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBManager for table: {table_name}")

    def get_all_events(self) -> Dict[str, EventRecord]:
        """
        Retrieve all events from DynamoDB using Scan operation.

        Returns:
            Dictionary mapping event id to EventRecord objects
        """
        logger.info("Scanning DynamoDB table for all events")
        events = {}

        try:
            response = self.table.scan()
            items = response.get('Items', [])

            # Handle pagination
            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))

            for item in items:
                event = self._item_to_record(item)
                if event:
                    events[event.id] = event

            logger.info(f"Retrieved {len(events)} events from DynamoDB")
            return events

        except ClientError as e:
            logger.error(f"Error scanning DynamoDB table: {e}")
            raise

    def put_event(self, record: EventRecord) -> None:
        """
        Write a single record, replacing any previous version.

        Raises:
            ClientError: If the write fails
        """
        try:
            self.table.put_item(Item=self._record_to_item(record))
        except ClientError as e:
            logger.error(f"Error writing event {record.id} to DynamoDB: {e}")
            raise

    def batch_write_events(self, records: List[EventRecord]) -> int:
        """
        Write records to DynamoDB in batches of 25 items.

        Args:
            records: List of EventRecord objects to write

        Returns:
            Count of successfully written events
        """
        if not records:
            return 0

        logger.info(f"Writing {len(records)} events to DynamoDB")
        success_count = 0

        for i in range(0, len(records), self.BATCH_SIZE):
            batch = records[i:i + self.BATCH_SIZE]

            try:
                with self.table.batch_writer() as writer:
                    for record in batch:
                        writer.put_item(Item=self._record_to_item(record))
                        success_count += 1

            except ClientError as e:
                logger.error(
                    f"Error writing batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                # Continue processing remaining batches
                continue

        logger.info(f"Successfully wrote {success_count} events")
        return success_count

    def _item_to_record(self, item: dict) -> Optional[EventRecord]:
        """
        Convert DynamoDB item to EventRecord object.

        Args:
            item: DynamoDB item dictionary

        Returns:
            EventRecord object or None if conversion fails
        """
        try:
            return EventRecord(
                id=item['event_id'],
                title=item['title'],
                start_at=parse_timestamp(item['start_at']),
                end_at=parse_timestamp(item['end_at']),
                location=item['location'],
                status=EventStatus(item['status']),
                updated_at=parse_timestamp(item['updated_at']),
                internal_notes=item.get('internal_notes'),
                created_by=item.get('created_by')
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Failed to convert item to EventRecord: {e}")
            return None

    def _record_to_item(self, record: EventRecord) -> dict:
        """
        Convert EventRecord object to DynamoDB item.

        Args:
            record: EventRecord object

        Returns:
            DynamoDB item dictionary
        """
        item = {
            'event_id': record.id,
            'title': record.title,
            'start_at': format_timestamp(record.start_at),
            'end_at': format_timestamp(record.end_at),
            'event_date': record.start_at.strftime('%Y-%m-%d'),
            'location': record.location,
            'status': record.status.value,
            'updated_at': format_timestamp(record.updated_at)
        }

        # Add optional fields if present
        if record.internal_notes is not None:
            item['internal_notes'] = record.internal_notes
        if record.created_by is not None:
            item['created_by'] = record.created_by

        return item

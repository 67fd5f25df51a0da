"""DynamoDB manager for users and reservations."""
import logging
from datetime import datetime, timezone
from typing import List, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError

from processor.models import ParsedEvent, UpsertResult, User

logger = logging.getLogger(__name__)


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat()


class DynamoDBManager:
    """Manager for DynamoDB operations."""

    BATCH_SIZE = 25  # DynamoDB batch operation limit
    EMAIL_INDEX = 'email-index'

    def __init__(self, users_table_name: str, reservations_table_name: str):
        """
        Initialize DynamoDB client and table references.

        Args:
            users_table_name: Table keyed by user_id
            reservations_table_name: Table keyed by user_id and external_uid
        """
        self.dynamodb = boto3.resource('dynamodb')
        self.users_table = self.dynamodb.Table(users_table_name)
        self.reservations_table = self.dynamodb.Table(reservations_table_name)
        logger.info(
            f"Initialized DynamoDBManager for tables: "
            f"{users_table_name}, {reservations_table_name}"
        )

    def get_user(self, user_id: str) -> Optional[User]:
        """
        Retrieve a user by ID.

        Returns:
            User object or None if the user does not exist
        """
        response = self.users_table.get_item(Key={'user_id': user_id})
        item = response.get('Item')
        return self._item_to_user(item) if item else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        """
        Retrieve a user by email address using the email index.

        Addresses are stored lowercase, so the lookup is case-insensitive.

        Returns:
            User object or None if no user has this address
        """
        response = self.users_table.query(
            IndexName=self.EMAIL_INDEX,
            KeyConditionExpression=Key('email').eq(email.lower())
        )
        items = response.get('Items', [])
        return self._item_to_user(items[0]) if items else None

    def get_users_with_feed_url(self) -> List[User]:
        """
        Retrieve all users that have a feed URL configured.

        Returns:
            List of User objects
        """
        scan_kwargs = {'FilterExpression': Attr('feed_url').exists()}
        response = self.users_table.scan(**scan_kwargs)
        items = response.get('Items', [])

        # Handle pagination
        while 'LastEvaluatedKey' in response:
            response = self.users_table.scan(
                ExclusiveStartKey=response['LastEvaluatedKey'],
                **scan_kwargs
            )
            items.extend(response.get('Items', []))

        users = [self._item_to_user(item) for item in items]
        logger.info(f"Found {len(users)} users with a feed URL")
        return users

    def update_user_feed_url(self, user_id: str, encrypted_feed_url: str) -> None:
        """Store a user's encrypted feed URL."""
        self.users_table.update_item(
            Key={'user_id': user_id},
            UpdateExpression='SET feed_url = :feed_url, updated_at = :now',
            ExpressionAttributeValues={
                ':feed_url': encrypted_feed_url,
                ':now': _iso(datetime.now(timezone.utc))
            }
        )

    def mark_synced(self, user_id: str) -> None:
        """Record that a user's feed was just synchronized."""
        now = _iso(datetime.now(timezone.utc))
        self.users_table.update_item(
            Key={'user_id': user_id},
            UpdateExpression='SET feed_last_synced = :now, updated_at = :now',
            ExpressionAttributeValues={':now': now}
        )

    def upsert_reservation(
        self,
        user_id: str,
        event: ParsedEvent,
        expires_at: datetime
    ) -> UpsertResult:
        """
        Create or overwrite the reservation identified by (user_id, event.uid).

        Args:
            user_id: Owning user
            event: Parsed reservation
            expires_at: When the reservation may be removed

        Returns:
            UpsertResult; failures carry only the DynamoDB error code or
            the botocore error class name
        """
        fields = {
            'library_code': event.library_code,
            'room': event.room,
            'seat_number': event.seat_number,
            'starts_at': _iso(event.starts_at),
            'ends_at': _iso(event.ends_at),
            'is_canceled': event.is_canceled,
            'expires_at': _iso(expires_at),
            'ttl': int(expires_at.timestamp()),
            'updated_at': _iso(datetime.now(timezone.utc)),
        }
        assignments = [f"#{name} = :{name}" for name in fields]
        assignments.append('#created_at = if_not_exists(#created_at, :updated_at)')

        names = {f"#{name}": name for name in fields}
        names['#created_at'] = 'created_at'

        try:
            self.reservations_table.update_item(
                Key={'user_id': user_id, 'external_uid': event.uid},
                UpdateExpression='SET ' + ', '.join(assignments),
                ExpressionAttributeNames=names,
                ExpressionAttributeValues={f":{name}": value for name, value in fields.items()}
            )
        except ClientError as e:
            logger.error(f"Error upserting reservation {event.uid} for user {user_id}: {e}")
            return UpsertResult(ok=False, error=e.response['Error']['Code'])
        except BotoCoreError as e:
            # Connection and timeout failures never reach DynamoDB
            logger.error(f"Error upserting reservation {event.uid} for user {user_id}: {e}")
            return UpsertResult(ok=False, error=type(e).__name__)

        return UpsertResult(ok=True)

    def delete_expired_reservations(self, now: Optional[datetime] = None) -> int:
        """
        Delete reservations whose expiry lies at or before now.

        Returns:
            Count of deleted reservations
        """
        now = now or datetime.now(timezone.utc)
        scan_kwargs = {
            'FilterExpression': Attr('expires_at').lte(_iso(now)),
            'ProjectionExpression': 'user_id, external_uid'
        }
        response = self.reservations_table.scan(**scan_kwargs)
        keys = response.get('Items', [])

        while 'LastEvaluatedKey' in response:
            response = self.reservations_table.scan(
                ExclusiveStartKey=response['LastEvaluatedKey'],
                **scan_kwargs
            )
            keys.extend(response.get('Items', []))

        if not keys:
            return 0

        logger.info(f"Deleting {len(keys)} expired reservations")
        success_count = 0

        # Process in batches of 25 (DynamoDB limit)
        for i in range(0, len(keys), self.BATCH_SIZE):
            batch = keys[i:i + self.BATCH_SIZE]

            try:
                with self.reservations_table.batch_writer() as writer:
                    for key in batch:
                        writer.delete_item(Key={
                            'user_id': key['user_id'],
                            'external_uid': key['external_uid']
                        })
                success_count += len(batch)

            except ClientError as e:
                logger.error(
                    f"Error deleting batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                # Continue processing remaining batches
                continue

        logger.info(f"Successfully deleted {success_count} expired reservations")
        return success_count

    def _item_to_user(self, item: dict) -> User:
        """
        Convert DynamoDB item to User object.

        Args:
            item: DynamoDB item dictionary

        Returns:
            User object
        """
        return User(
            user_id=item['user_id'],
            email=item.get('email', ''),
            feed_url=item.get('feed_url'),
            feed_last_synced=item.get('feed_last_synced'),
            keep_history=bool(item.get('keep_history', False))
        )

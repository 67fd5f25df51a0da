"""AWS Lambda handler for library seat reservation sync."""
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Dict, Any, Optional

import boto3

from feed.crypto import encrypt
from feed.ics_fetcher import IcsFetcher
from feed.rate_limiter import RateLimiter
from feed.sharing_email import EmailParseError, parse_calendar_sharing_email
from processor.sync_service import SyncService
from storage.dynamodb_manager import DynamoDBManager

# Attributes every LogRecord has; anything else came in through extra=
_RESERVED_LOG_ATTRS = set(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}


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


@dataclass
class Config:
    """Settings read from the Lambda environment."""
    users_table_name: str
    reservations_table_name: str
    log_level: str
    timeout_seconds: int
    max_feed_bytes: int
    encryption_key: Optional[str]
    allowed_feed_host: str
    allowed_sender_domain: str
    sync_requests_per_second: float
    inbound_email_bucket: Optional[str]
    inbound_email_prefix: str

    @classmethod
    def from_env(cls) -> 'Config':
        return cls(
            users_table_name=os.environ.get('USERS_TABLE_NAME', 'seat-users'),
            reservations_table_name=os.environ.get('RESERVATIONS_TABLE_NAME', 'seat-reservations'),
            log_level=os.environ.get('LOG_LEVEL', 'INFO'),
            timeout_seconds=int(os.environ.get('TIMEOUT_SECONDS', '30')),
            max_feed_bytes=int(os.environ.get('MAX_FEED_BYTES', str(5 * 1024 * 1024))),
            encryption_key=os.environ.get('ENCRYPTION_KEY'),
            allowed_feed_host=os.environ.get('ALLOWED_FEED_HOST', 'outlook.office365.com'),
            allowed_sender_domain=os.environ.get('ALLOWED_SENDER_DOMAIN', 'student.kuleuven.be'),
            sync_requests_per_second=float(os.environ.get('SYNC_REQUESTS_PER_SECOND', '2')),
            inbound_email_bucket=os.environ.get('INBOUND_EMAIL_BUCKET'),
            inbound_email_prefix=os.environ.get('INBOUND_EMAIL_PREFIX', '')
        )


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {'statusCode': status_code, 'body': json.dumps(body)}


def _is_http_request(event: Dict[str, Any]) -> bool:
    return 'httpMethod' in event or 'http' in event.get('requestContext', {})


def _is_ses_event(event: Dict[str, Any]) -> bool:
    records = event.get('Records') or []
    return bool(records) and records[0].get('eventSource') == 'aws:ses'


def _build_sync_service(config: Config, store: DynamoDBManager) -> SyncService:
    if not config.encryption_key:
        raise ValueError("ENCRYPTION_KEY is not configured")

    fetcher = IcsFetcher(timeout=config.timeout_seconds, max_bytes=config.max_feed_bytes)
    return SyncService(
        store=store,
        fetcher=fetcher,
        encryption_key=config.encryption_key,
        allowed_feed_host=config.allowed_feed_host
    )


def handle_scheduled(event: Dict[str, Any], config: Config, store: DynamoDBManager) -> Dict[str, Any]:
    """Run the cleanup or the hourly sync depending on the schedule's task."""
    logger = logging.getLogger(__name__)
    task = event.get('task', 'sync')

    if task == 'cleanup':
        deleted = store.delete_expired_reservations()
        logger.info(f"Deleted {deleted} expired reservations")
        return _response(200, {'message': 'Cleanup completed', 'deleted': deleted})

    service = _build_sync_service(config, store)
    outcomes = service.sync_all(RateLimiter(config.sync_requests_per_second))

    return _response(200, {
        'message': 'Sync completed',
        'statistics': {
            'users_synced': len(outcomes),
            'reservations_synced': sum(o.synced_count for o in outcomes.values()),
            'errors': sum(len(o.errors) for o in outcomes.values())
        }
    })


def handle_inbound_email(event: Dict[str, Any], config: Config, store: DynamoDBManager) -> Dict[str, Any]:
    """Store the feed URL from a calendar sharing email and sync it right away."""
    logger = logging.getLogger(__name__)

    if not config.inbound_email_bucket:
        raise ValueError("INBOUND_EMAIL_BUCKET is not configured")

    message_id = event['Records'][0]['ses']['mail']['messageId']
    s3 = boto3.client('s3')
    obj = s3.get_object(
        Bucket=config.inbound_email_bucket,
        Key=f"{config.inbound_email_prefix}{message_id}"
    )
    raw_email = obj['Body'].read()

    try:
        invite = parse_calendar_sharing_email(
            raw_email,
            allowed_sender_domain=config.allowed_sender_domain,
            allowed_feed_host=config.allowed_feed_host
        )
    except EmailParseError as e:
        logger.error(f"Email parsing failed: {e}")
        return _response(400, {'message': 'Email rejected', 'error': str(e)})

    logger.info(f"Received calendar share from {invite.sender_email}")

    user = store.get_user_by_email(invite.sender_email)
    if not user:
        logger.error(f"No user found with email: {invite.sender_email}")
        return _response(404, {'message': 'Unknown sender'})

    service = _build_sync_service(config, store)
    store.update_user_feed_url(user.user_id, encrypt(invite.feed_url, config.encryption_key))
    logger.info(f"Updated feed URL for user {user.user_id}")

    outcome = service.sync_user(user.user_id)
    return _response(200, {
        'message': 'Calendar share registered',
        'statistics': {'reservations_synced': outcome.synced_count},
        'errors': outcome.errors
    })


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function.

    Args:
        event: EventBridge schedule, SES receipt or HTTP request payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and body
    """
    config = Config.from_env()

    setup_logging(config.log_level)
    logger = logging.getLogger(__name__)

    # No HTTP endpoints are exposed
    if _is_http_request(event):
        return _response(404, {'error': 'Not found'})

    start_time = time.time()
    logger.info(
        "Lambda execution started",
        extra={
            'users_table': config.users_table_name,
            'reservations_table': config.reservations_table_name
        }
    )

    try:
        store = DynamoDBManager(
            users_table_name=config.users_table_name,
            reservations_table_name=config.reservations_table_name
        )

        if _is_ses_event(event):
            response = handle_inbound_email(event, config, store)
        else:
            response = handle_scheduled(event, config, store)

        logger.info(
            "Lambda execution completed",
            extra={
                'duration_seconds': round(time.time() - start_time, 2),
                'status_code': response['statusCode']
            }
        )
        return response

    except Exception as e:
        duration = time.time() - start_time

        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )

        return _response(500, {
            'message': 'Execution failed',
            'error_type': type(e).__name__,
            'duration_seconds': round(duration, 2)
        })

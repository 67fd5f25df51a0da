"""Shared fixtures."""
import boto3
import pytest
from boto3.dynamodb.conditions import Key
from moto import mock_aws

from storage.dynamodb_manager import DynamoDBManager

USERS_TABLE = 'test-seat-users'
RESERVATIONS_TABLE = 'test-seat-reservations'

# "0123456789abcdef0123456789abcdef" in base64; only for tests
TEST_KEY = 'MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY='


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake credentials so nothing can reach a real AWS account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def dynamodb_tables():
    """Create mock users and reservations tables."""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')

        users = dynamodb.create_table(
            TableName=USERS_TABLE,
            KeySchema=[
                {'AttributeName': 'user_id', 'KeyType': 'HASH'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'user_id', 'AttributeType': 'S'},
                {'AttributeName': 'email', 'AttributeType': 'S'}
            ],
            GlobalSecondaryIndexes=[
                {
                    'IndexName': 'email-index',
                    'KeySchema': [
                        {'AttributeName': 'email', 'KeyType': 'HASH'}
                    ],
                    'Projection': {'ProjectionType': 'ALL'}
                }
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        reservations = dynamodb.create_table(
            TableName=RESERVATIONS_TABLE,
            KeySchema=[
                {'AttributeName': 'user_id', 'KeyType': 'HASH'},
                {'AttributeName': 'external_uid', 'KeyType': 'RANGE'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'user_id', 'AttributeType': 'S'},
                {'AttributeName': 'external_uid', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        yield users, reservations


@pytest.fixture
def dynamodb_manager(dynamodb_tables):
    """Create DynamoDBManager instance with mock tables."""
    return DynamoDBManager(USERS_TABLE, RESERVATIONS_TABLE)


@pytest.fixture
def encryption_key():
    return TEST_KEY


@pytest.fixture
def stored_reservations(dynamodb_tables):
    """Return a function listing a user's reservation items straight from the table."""
    _, reservations = dynamodb_tables

    def query(user_id):
        response = reservations.query(KeyConditionExpression=Key('user_id').eq(user_id))
        return response['Items']

    return query

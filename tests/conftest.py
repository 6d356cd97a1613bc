"""
Pytest configuration for session-service tests
"""
import pytest
import boto3
from moto import mock_aws
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from session_service.dynamo import ConditionalStore
from session_service.services.analytics_emitter import AnalyticsEmitter

TABLE_NAME = "session-service-test"
USER_ID_INDEX = "UserIdIndex"


class FakeClock:
    """Settable UTC clock"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mock AWS credentials for moto"""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def dynamodb_table(aws_credentials):
    """Single table with the userId/startTime index sessions are found by"""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        table = dynamodb.create_table(
            TableName=TABLE_NAME,
            KeySchema=[
                {"AttributeName": "PK", "KeyType": "HASH"},
                {"AttributeName": "SK", "KeyType": "RANGE"}
            ],
            AttributeDefinitions=[
                {"AttributeName": "PK", "AttributeType": "S"},
                {"AttributeName": "SK", "AttributeType": "S"},
                {"AttributeName": "userId", "AttributeType": "S"},
                {"AttributeName": "startTime", "AttributeType": "S"}
            ],
            GlobalSecondaryIndexes=[{
                "IndexName": USER_ID_INDEX,
                "KeySchema": [
                    {"AttributeName": "userId", "KeyType": "HASH"},
                    {"AttributeName": "startTime", "KeyType": "RANGE"}
                ],
                "Projection": {"ProjectionType": "ALL"}
            }],
            BillingMode="PAY_PER_REQUEST"
        )
        yield table


@pytest.fixture
def store(dynamodb_table):
    return ConditionalStore(dynamodb_table, USER_ID_INDEX)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 10, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def emitter():
    """Emitter stand-in that accepts everything"""
    mock = AsyncMock(spec=AnalyticsEmitter)
    mock.send_metrics.return_value = True
    mock.send_activity_time.return_value = True
    mock.send_session_completed_event.return_value = True
    return mock

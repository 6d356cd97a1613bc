"""
DynamoDB operations for session-service

Single-table layout:
- Session items:        PK=USER#<userId>#SESSION#<sessionId>, SK=SESSION
- Delta counter items:  PK=USER#<userId>, SK=METRICS#<YYYY-MM-DD>
- Profile items:        PK=USER#<userId>, SK=PROFILE
- Progress items:       PK=USER#<userId>, SK=PROGRESS#<trackId>

ConditionalStore wraps a table and exposes the conditional primitives the
session and metrics services are built on (versioned update, atomic
increment, snapshot-and-clear).
"""
import boto3
from boto3.dynamodb.conditions import Key
from typing import Optional, Dict, Any, List, Iterable, Tuple
from decimal import Decimal
import logging

from session_service.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class VersionConflictError(ValueError):
    """Raised when a versioned update loses the race against another writer"""

    def __init__(self, key: Tuple[str, str], expected_version: int):
        self.key = key
        self.expected_version = expected_version
        super().__init__(f"Concurrent modification detected on {key[0]} (expected version {expected_version})")


class DynamoDBClient:
    """DynamoDB client with lazy initialization"""

    def __init__(self):
        self.settings = settings
        self._dynamodb = None
        self._session_table = None
        self._metrics_table = None

    @property
    def dynamodb(self):
        """Lazy initialization of DynamoDB resource"""
        if self._dynamodb is None:
            kwargs = {
                'region_name': self.settings.AWS_REGION,
            }

            # Only use endpoint_url for LocalStack
            if self.settings.DYNAMODB_ENDPOINT:
                kwargs['endpoint_url'] = self.settings.DYNAMODB_ENDPOINT

            # Explicit credentials only in LocalStack mode, ECS uses the IAM role
            if self.settings.DYNAMODB_ENDPOINT and self.settings.AWS_ACCESS_KEY_ID:
                kwargs['aws_access_key_id'] = self.settings.AWS_ACCESS_KEY_ID
                kwargs['aws_secret_access_key'] = self.settings.AWS_SECRET_ACCESS_KEY
                logger.info("Using explicit AWS credentials (LocalStack mode)")
            else:
                logger.info("Using IAM role credentials (AWS/ECS mode)")

            self._dynamodb = boto3.resource('dynamodb', **kwargs)
        return self._dynamodb

    @property
    def session_table(self):
        if self._session_table is None:
            self._session_table = self.dynamodb.Table(self.settings.DYNAMODB_SESSION_TABLE)
        return self._session_table

    @property
    def metrics_table(self):
        """Delta counters, profiles and progress (shared with sessions by default)"""
        if self._metrics_table is None:
            self._metrics_table = self.dynamodb.Table(self.settings.DYNAMODB_METRICS_TABLE)
        return self._metrics_table


# Global instance
db_client = DynamoDBClient()


# ============= KEYS =============

def session_key(user_id: str, session_id: str) -> Tuple[str, str]:
    return f"USER#{user_id}#SESSION#{session_id}", "SESSION"


def metrics_key(user_id: str, day: str) -> Tuple[str, str]:
    """Delta counters are scoped per user per UTC day (YYYY-MM-DD)"""
    return f"USER#{user_id}", f"METRICS#{day}"


def profile_key(user_id: str) -> Tuple[str, str]:
    return f"USER#{user_id}", "PROFILE"


def progress_key(user_id: str, track_id: str) -> Tuple[str, str]:
    return f"USER#{user_id}", f"PROGRESS#{track_id}"


# ============= CONDITIONAL STORE =============

class ConditionalStore:
    """
    Conditional key-value store over a DynamoDB table.

    Every method is the only place its DynamoDB expression is built, so the
    services never assemble UpdateExpressions themselves.
    """

    def __init__(self, table, user_id_index: Optional[str] = None):
        """
        Args:
            table: boto3 DynamoDB Table resource
            user_id_index: GSI on userId (HASH) + startTime (RANGE)
        """
        self.table = table
        self.user_id_index = user_id_index or settings.DYNAMODB_USER_ID_INDEX

    @property
    def _conditional_check_failed(self):
        return self.table.meta.client.exceptions.ConditionalCheckFailedException

    async def get_item(self, key: Tuple[str, str]) -> Optional[Dict[str, Any]]:
        response = self.table.get_item(Key={'PK': key[0], 'SK': key[1]})
        if 'Item' not in response:
            return None
        return python_dict(response['Item'])

    async def put_new(self, item: Dict[str, Any]) -> Dict[str, Any]:
        """
        Plain write of a new item. Fails with VersionConflictError when an
        item with the same key already exists.
        """
        try:
            self.table.put_item(
                Item=dynamodb_dict(item),
                ConditionExpression='attribute_not_exists(PK)'
            )
            return item
        except self._conditional_check_failed:
            raise VersionConflictError((item['PK'], item['SK']), 0)

    async def get_latest_by_user_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Most recent item on the userId index (newest startTime first)"""
        response = self.table.query(
            IndexName=self.user_id_index,
            KeyConditionExpression=Key('userId').eq(user_id),
            ScanIndexForward=False,
            Limit=1
        )
        items = response.get('Items', [])
        if not items:
            return None
        return python_dict(items[0])

    async def query_by_user_id(
        self,
        user_id: str,
        start_from: Optional[str] = None,
        start_to: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        All items for a user on the userId index, optionally bounded by
        startTime (ISO strings, inclusive). Follows pagination.
        """
        condition = Key('userId').eq(user_id)
        if start_from and start_to:
            condition = condition & Key('startTime').between(start_from, start_to)
        elif start_from:
            condition = condition & Key('startTime').gte(start_from)
        elif start_to:
            condition = condition & Key('startTime').lte(start_to)

        kwargs = {
            'IndexName': self.user_id_index,
            'KeyConditionExpression': condition,
        }
        items: List[Dict[str, Any]] = []
        while True:
            response = self.table.query(**kwargs)
            items.extend(python_dict(item) for item in response.get('Items', []))
            last_key = response.get('LastEvaluatedKey')
            if not last_key:
                break
            kwargs['ExclusiveStartKey'] = last_key
        return items

    async def conditional_update(
        self,
        key: Tuple[str, str],
        expected_version: int,
        updates: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Update an item with optimistic locking.

        The write only applies if the stored version equals expected_version;
        on success the version becomes expected_version + 1.

        Returns:
            Updated item

        Raises:
            VersionConflictError: another writer got there first
        """
        names = {'#version': 'version'}
        values = {
            ':expected_version': expected_version,
            ':new_version': expected_version + 1,
        }
        parts = ['#version = :new_version']
        for i, (field, value) in enumerate(updates.items()):
            names[f'#f{i}'] = field
            values[f':v{i}'] = dynamodb_value(value)
            parts.append(f'#f{i} = :v{i}')

        try:
            response = self.table.update_item(
                Key={'PK': key[0], 'SK': key[1]},
                UpdateExpression='SET ' + ', '.join(parts),
                ConditionExpression='#version = :expected_version',
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues='ALL_NEW'
            )
            return python_dict(response['Attributes'])
        except self._conditional_check_failed:
            logger.warning(f"Version mismatch on {key[0]}: expected {expected_version}, item was modified")
            raise VersionConflictError(key, expected_version)

    async def atomic_increment(
        self,
        key: Tuple[str, str],
        amounts: Dict[str, float],
        create_if_absent: bool = True,
        stamp_field: Optional[str] = None,
        stamp_value: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Atomically add numeric amounts to fields, starting from 0 when a
        field is missing. Increments commute, no version check involved.

        With create_if_absent=False the item must already exist; a missing
        item is a no-op and returns None.
        """
        if not amounts:
            return None

        names = {}
        values: Dict[str, Any] = {':zero': 0}
        parts = []
        for i, (field, amount) in enumerate(amounts.items()):
            names[f'#f{i}'] = field
            values[f':v{i}'] = dynamodb_value(amount)
            parts.append(f'#f{i} = if_not_exists(#f{i}, :zero) + :v{i}')
        if stamp_field:
            names['#stamp'] = stamp_field
            values[':stamp'] = stamp_value
            parts.append('#stamp = :stamp')

        kwargs = {
            'Key': {'PK': key[0], 'SK': key[1]},
            'UpdateExpression': 'SET ' + ', '.join(parts),
            'ExpressionAttributeNames': names,
            'ExpressionAttributeValues': values,
            'ReturnValues': 'ALL_NEW'
        }
        if not create_if_absent:
            kwargs['ConditionExpression'] = 'attribute_exists(PK)'

        try:
            response = self.table.update_item(**kwargs)
            return python_dict(response['Attributes'])
        except self._conditional_check_failed:
            logger.warning(f"Skipped increment on missing item {key[0]}")
            return None

    async def snapshot_and_clear(
        self,
        key: Tuple[str, str],
        fields: Iterable[str],
        flushed_suffix: str = 'Flushed',
        stamp_field: Optional[str] = None,
        stamp_value: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """
        In one atomic update, copy each field into <field-stem><suffix> and
        remove the field. Returns the pre-update values of the cleared fields,
        or None when nothing was cleared.

        Field names are expected to end in "Delta"; the stem is the name
        without it (timeSpentDelta -> timeSpentFlushed).
        """
        fields = list(fields)
        if not fields:
            return None

        names = {}
        set_parts = []
        remove_parts = []
        values: Dict[str, Any] = {}
        for i, field in enumerate(fields):
            stem = field[:-len('Delta')] if field.endswith('Delta') else field
            names[f'#d{i}'] = field
            names[f'#s{i}'] = f'{stem}{flushed_suffix}'
            set_parts.append(f'#s{i} = #d{i}')
            remove_parts.append(f'#d{i}')
        if stamp_field:
            names['#stamp'] = stamp_field
            values[':stamp'] = stamp_value
            set_parts.append('#stamp = :stamp')

        kwargs = {
            'Key': {'PK': key[0], 'SK': key[1]},
            'UpdateExpression': 'SET ' + ', '.join(set_parts) + ' REMOVE ' + ', '.join(remove_parts),
            'ConditionExpression': 'attribute_exists(PK)',
            'ExpressionAttributeNames': names,
            'ReturnValues': 'UPDATED_OLD'
        }
        if values:
            kwargs['ExpressionAttributeValues'] = values

        try:
            response = self.table.update_item(**kwargs)
        except self._conditional_check_failed:
            return None

        old = python_dict(response.get('Attributes', {}))
        cleared = {field: old[field] for field in fields if field in old}
        return cleared or None

    async def remove_attributes(self, key: Tuple[str, str], fields: Iterable[str]) -> None:
        fields = list(fields)
        if not fields:
            return
        names = {f'#f{i}': field for i, field in enumerate(fields)}
        self.table.update_item(
            Key={'PK': key[0], 'SK': key[1]},
            UpdateExpression='REMOVE ' + ', '.join(names.keys()),
            ConditionExpression='attribute_exists(PK)',
            ExpressionAttributeNames=names
        )

    async def claim_marker(self, key: Tuple[str, str], marker: str, value: str) -> bool:
        """
        One-shot claim: set marker only if the item exists and the marker is
        absent. Returns True for the single caller that wins.
        """
        try:
            self.table.update_item(
                Key={'PK': key[0], 'SK': key[1]},
                UpdateExpression='SET #m = :v',
                ConditionExpression='attribute_exists(PK) AND attribute_not_exists(#m)',
                ExpressionAttributeNames={'#m': marker},
                ExpressionAttributeValues={':v': value}
            )
            return True
        except self._conditional_check_failed:
            return False


def get_session_store() -> ConditionalStore:
    return ConditionalStore(db_client.session_table, settings.DYNAMODB_USER_ID_INDEX)


def get_metrics_store() -> ConditionalStore:
    return ConditionalStore(db_client.metrics_table, settings.DYNAMODB_USER_ID_INDEX)


# ============= HELPERS =============

def dynamodb_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert Python dict to DynamoDB compatible dict (handles Decimal)"""
    return {k: dynamodb_value(v) for k, v in data.items()}


def dynamodb_value(value: Any) -> Any:
    """Convert Python value to DynamoDB compatible value"""
    if isinstance(value, float):
        return Decimal(str(value))
    elif isinstance(value, dict):
        return {k: dynamodb_value(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [dynamodb_value(item) for item in value]
    return value


def python_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert DynamoDB dict to Python dict (handles Decimal)"""
    return {k: python_value(v) for k, v in data.items()}


def python_value(value: Any) -> Any:
    """Convert DynamoDB value to Python value"""
    if isinstance(value, Decimal):
        return int(value) if value % 1 == 0 else float(value)
    elif isinstance(value, dict):
        return {k: python_value(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [python_value(item) for item in value]
    return value

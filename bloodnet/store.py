"""
Document store used by the engine.

Two backends share one interface:
- MemoryStore keeps collections in process (local development, tests)
- DynamoStore keeps one DynamoDB table per collection

Every operation touches a single document, and the conditional operations
(update_one_if, delete_one with expected) are atomic in both backends. That is
the only coordination primitive the engine relies on.
"""
import copy
import logging
import threading
import uuid
from contextlib import contextmanager
from decimal import Decimal

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError

from bloodnet.constants import (BLOOD_OFFERS, BLOOD_REQUESTS, BLOOD_UNITS, COLLECTIONS,
                                DONATION_HISTORY, NOTIFICATIONS, TRANSFERS, USERS)
from bloodnet.errors import DuplicateKeyError, StorageError

logger = logging.getLogger(__name__)

KEY_FIELDS = {USERS: 'email'}

ID_PREFIXES = {
    USERS: 'USR',
    BLOOD_UNITS: 'BU',
    BLOOD_REQUESTS: 'BR',
    NOTIFICATIONS: 'NT',
    BLOOD_OFFERS: 'OF',
    TRANSFERS: 'TR',
    DONATION_HISTORY: 'DN',
}


def key_field(collection):
    """Name of the primary key attribute for a collection"""
    return KEY_FIELDS.get(collection, 'id')


def generate_id(prefix='ID'):
    return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"


def _matches(doc, filter_):
    # tuple/list/set values mean "one of"
    for field, expected in (filter_ or {}).items():
        value = doc.get(field)
        if isinstance(expected, (tuple, list, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


def _apply_sort(docs, sort):
    # documents missing the field sort before those that have it
    for field, direction in reversed(sort or []):
        docs.sort(key=lambda d: (d.get(field) is not None,
                                 d.get(field) if d.get(field) is not None else ''),
                  reverse=direction < 0)
    return docs


class DocumentStore:
    """Interface shared by the store backends"""

    def insert_one(self, collection, doc):
        raise NotImplementedError

    def get(self, collection, key):
        raise NotImplementedError

    def find(self, collection, filter_=None, sort=None, limit=None):
        raise NotImplementedError

    def update_one_if(self, collection, key, expected, patch):
        """Apply patch only if the document exists and matches expected. Returns True on match."""
        raise NotImplementedError

    def delete_one(self, collection, key, expected=None):
        raise NotImplementedError

    def find_one(self, collection, filter_):
        found = self.find(collection, filter_, limit=1)
        return found[0] if found else None

    def update_one(self, collection, key, patch):
        return self.update_one_if(collection, key, {}, patch)

    def delete_many(self, collection, filter_):
        field = key_field(collection)
        deleted = 0
        for doc in self.find(collection, filter_):
            if self.delete_one(collection, doc[field]):
                deleted += 1
        return deleted

    def count(self, collection, filter_=None):
        return len(self.find(collection, filter_))


# ============== IN-MEMORY BACKEND ==============

class MemoryStore(DocumentStore):
    """Dictionary backed store; a single lock makes each operation atomic"""

    def __init__(self):
        self._collections = {name: {} for name in COLLECTIONS}
        self._lock = threading.Lock()

    def insert_one(self, collection, doc):
        field = key_field(collection)
        item = copy.deepcopy(doc)
        item.setdefault(field, generate_id(ID_PREFIXES.get(collection, 'ID')))
        with self._lock:
            docs = self._collections[collection]
            if item[field] in docs:
                raise DuplicateKeyError(f"{collection} already contains {item[field]}")
            docs[item[field]] = item
        return copy.deepcopy(item)

    def get(self, collection, key):
        with self._lock:
            doc = self._collections[collection].get(key)
            return copy.deepcopy(doc) if doc is not None else None

    def find(self, collection, filter_=None, sort=None, limit=None):
        with self._lock:
            docs = [copy.deepcopy(d) for d in self._collections[collection].values()
                    if _matches(d, filter_)]
        docs = _apply_sort(docs, sort)
        return docs[:limit] if limit else docs

    def update_one_if(self, collection, key, expected, patch):
        with self._lock:
            doc = self._collections[collection].get(key)
            if doc is None or not _matches(doc, expected):
                return False
            doc.update(copy.deepcopy(patch))
            return True

    def delete_one(self, collection, key, expected=None):
        with self._lock:
            docs = self._collections[collection]
            doc = docs.get(key)
            if doc is None or not _matches(doc, expected):
                return False
            del docs[key]
            return True


# ============== DYNAMODB BACKEND ==============

def _to_dynamo(obj):
    # DynamoDB does not accept Python floats
    if isinstance(obj, dict):
        return {k: _to_dynamo(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_to_dynamo(v) for v in obj]
    if isinstance(obj, float):
        return Decimal(str(obj))
    return obj


def _from_dynamo(obj):
    if isinstance(obj, dict):
        return {k: _from_dynamo(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_from_dynamo(v) for v in obj]
    if isinstance(obj, Decimal):
        return int(obj) if obj == obj.to_integral_value() else float(obj)
    return obj


def _condition(field, expected):
    condition = Attr(field).exists()
    for name, value in (expected or {}).items():
        if isinstance(value, (tuple, list, set, frozenset)):
            condition = condition & Attr(name).is_in([_to_dynamo(v) for v in value])
        else:
            condition = condition & Attr(name).eq(_to_dynamo(value))
    return condition


def _filter_expression(filter_):
    expression = None
    for name, value in (filter_ or {}).items():
        if isinstance(value, (tuple, list, set, frozenset)):
            clause = Attr(name).is_in([_to_dynamo(v) for v in value])
        else:
            clause = Attr(name).eq(_to_dynamo(value))
        expression = clause if expression is None else expression & clause
    return expression


def _is_conditional_failure(error):
    return error.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException'


@contextmanager
def _storage_errors(action, collection):
    try:
        yield
    except (ClientError, BotoCoreError) as e:
        logger.error("DynamoDB %s on %s failed: %s", action, collection, e)
        raise StorageError(f"Could not {action} {collection}: {e}") from e


def table_name(prefix, collection):
    return prefix + ''.join(part.title() for part in collection.split('_'))


class DynamoStore(DocumentStore):
    """One DynamoDB table per collection, e.g. BloodNetBloodRequests"""

    def __init__(self, region_name='us-east-1', table_prefix='BloodNet', resource=None):
        self.dynamodb = resource or boto3.resource('dynamodb', region_name=region_name)
        self.table_prefix = table_prefix
        self.tables = {name: self.dynamodb.Table(table_name(table_prefix, name))
                       for name in COLLECTIONS}

    def create_tables(self):
        """Create any missing tables with on-demand billing"""
        with _storage_errors('create tables for', self.table_prefix):
            existing = {t.name for t in self.dynamodb.tables.all()}
            for collection, table in self.tables.items():
                if table.name in existing:
                    continue
                field = key_field(collection)
                self.dynamodb.create_table(
                    TableName=table.name,
                    KeySchema=[{'AttributeName': field, 'KeyType': 'HASH'}],
                    AttributeDefinitions=[{'AttributeName': field, 'AttributeType': 'S'}],
                    BillingMode='PAY_PER_REQUEST',
                )
                logger.info("Created DynamoDB table %s", table.name)

    def insert_one(self, collection, doc):
        field = key_field(collection)
        item = dict(doc)
        item.setdefault(field, generate_id(ID_PREFIXES.get(collection, 'ID')))
        with _storage_errors('insert into', collection):
            try:
                self.tables[collection].put_item(
                    Item=_to_dynamo(item),
                    ConditionExpression=Attr(field).not_exists(),
                )
            except ClientError as e:
                if _is_conditional_failure(e):
                    raise DuplicateKeyError(f"{collection} already contains {item[field]}") from e
                raise
        return item

    def get(self, collection, key):
        with _storage_errors('read', collection):
            resp = self.tables[collection].get_item(Key={key_field(collection): key})
        item = resp.get('Item')
        return _from_dynamo(item) if item is not None else None

    def find(self, collection, filter_=None, sort=None, limit=None):
        kwargs = {}
        expression = _filter_expression(filter_)
        if expression is not None:
            kwargs['FilterExpression'] = expression
        items = []
        with _storage_errors('scan', collection):
            while True:
                resp = self.tables[collection].scan(**kwargs)
                items.extend(_from_dynamo(i) for i in resp.get('Items', []))
                if 'LastEvaluatedKey' not in resp:
                    break
                kwargs['ExclusiveStartKey'] = resp['LastEvaluatedKey']
        items = _apply_sort(items, sort)
        return items[:limit] if limit else items

    def update_one_if(self, collection, key, expected, patch):
        if not patch:
            raise ValueError("update_one_if needs a non-empty patch")
        field = key_field(collection)
        names, values, assignments = {}, {}, []
        for i, (name, value) in enumerate(patch.items()):
            names[f'#p{i}'] = name
            values[f':p{i}'] = _to_dynamo(value)
            assignments.append(f'#p{i} = :p{i}')
        with _storage_errors('update', collection):
            try:
                self.tables[collection].update_item(
                    Key={field: key},
                    UpdateExpression='SET ' + ', '.join(assignments),
                    ConditionExpression=_condition(field, expected),
                    ExpressionAttributeNames=names,
                    ExpressionAttributeValues=values,
                )
            except ClientError as e:
                if _is_conditional_failure(e):
                    return False
                raise
        return True

    def delete_one(self, collection, key, expected=None):
        field = key_field(collection)
        with _storage_errors('delete from', collection):
            try:
                self.tables[collection].delete_item(
                    Key={field: key},
                    ConditionExpression=_condition(field, expected),
                )
            except ClientError as e:
                if _is_conditional_failure(e):
                    return False
                raise
        return True


def create_store(config):
    """Build the store selected by config.STORE_BACKEND"""
    backend = getattr(config, 'STORE_BACKEND', 'memory')
    if backend == 'dynamodb':
        return DynamoStore(region_name=config.AWS_REGION, table_prefix=config.TABLE_PREFIX)
    if backend == 'memory':
        return MemoryStore()
    raise ValueError(f"Unknown STORE_BACKEND: {backend}")

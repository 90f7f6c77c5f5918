"""Unit tests for DynamoDBPersistenceStore.

The DynamoDB client is stubbed with botocore's Stubber, so the requests the
store builds are checked against the service model without network access.
"""

import boto3
import pytest
from botocore.exceptions import EndpointConnectionError
from botocore.stub import ANY, Stubber

from idempotent_functions.exceptions import (
    ConditionalCheckFailedError,
    PersistenceConnectionError,
    RecordNotFoundError,
)
from idempotent_functions.models import IdempotencyRecord, RecordStatus
from idempotent_functions.storage.base import PersistenceStore
from idempotent_functions.storage.dynamodb import DynamoDBPersistenceStore

TABLE = "IdempotencyTable"
NOW = 1_700_000_000


@pytest.fixture
def client():
    return boto3.client(
        "dynamodb",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def stubber(client):
    with Stubber(client) as stub:
        yield stub
        stub.assert_no_pending_responses()


@pytest.fixture
def dynamo_store(client):
    return DynamoDBPersistenceStore(table_name=TABLE, boto3_client=client)


def in_progress(**overrides) -> IdempotencyRecord:
    fields = {
        "idempotency_key": "fn#abc",
        "status": RecordStatus.INPROGRESS,
        "expiry_timestamp": NOW + 3600,
        "in_progress_expiry_timestamp": NOW + 30,
        "payload_hash": "h1",
    }
    fields.update(overrides)
    return IdempotencyRecord(**fields)


class TestConstruction:
    def test_satisfies_protocol(self, dynamo_store):
        assert isinstance(dynamo_store, PersistenceStore)

    def test_same_key_and_sort_key_rejected(self, client):
        with pytest.raises(ValueError, match="cannot be the same"):
            DynamoDBPersistenceStore(table_name=TABLE, key_attr="pk", sort_key_attr="pk", boto3_client=client)

    def test_static_pk_defaults_to_function_name(self, client, monkeypatch):
        monkeypatch.setenv("AWS_LAMBDA_FUNCTION_NAME", "orders")
        store = DynamoDBPersistenceStore(table_name=TABLE, sort_key_attr="sk", boto3_client=client)
        assert store.static_pk_value == "idempotency#orders"


class TestPutInProgress:
    @pytest.mark.asyncio
    async def test_put_new_record(self, dynamo_store, stubber):
        stubber.add_response(
            "put_item",
            {},
            {
                "TableName": TABLE,
                "Item": {
                    "id": {"S": "fn#abc"},
                    "status": {"S": "INPROGRESS"},
                    "expiration": {"N": str(NOW + 3600)},
                    "in_progress_expiration": {"N": str(NOW + 30)},
                    "validation": {"S": "h1"},
                },
                "ConditionExpression": (
                    "attribute_not_exists(#id) OR #expiry < :now OR "
                    "(#status = :inprogress AND attribute_exists(#in_progress_expiry) "
                    "AND #in_progress_expiry < :now)"
                ),
                "ExpressionAttributeNames": {
                    "#id": "id",
                    "#expiry": "expiration",
                    "#status": "status",
                    "#in_progress_expiry": "in_progress_expiration",
                },
                "ExpressionAttributeValues": {
                    ":now": {"N": str(NOW + 1)},
                    ":inprogress": {"S": "INPROGRESS"},
                },
            },
        )
        await dynamo_store.put_in_progress(in_progress(), NOW + 0.5)

    @pytest.mark.asyncio
    async def test_takeover_conditions_on_read_values(self, dynamo_store, stubber):
        stale = in_progress(expiry_timestamp=NOW + 100, in_progress_expiry_timestamp=NOW + 10)
        stubber.add_response(
            "put_item",
            {},
            {
                "TableName": TABLE,
                "Item": ANY,
                "ConditionExpression": (
                    "attribute_not_exists(#id) OR "
                    "(#expiry = :expected_expiry AND "
                    "#in_progress_expiry = :expected_in_progress_expiry)"
                ),
                "ExpressionAttributeNames": {
                    "#id": "id",
                    "#expiry": "expiration",
                    "#in_progress_expiry": "in_progress_expiration",
                },
                "ExpressionAttributeValues": {
                    ":expected_expiry": {"N": str(NOW + 100)},
                    ":expected_in_progress_expiry": {"N": str(NOW + 10)},
                },
            },
        )
        await dynamo_store.put_in_progress(in_progress(), NOW + 20, replace=stale)

    @pytest.mark.asyncio
    async def test_takeover_of_record_without_in_progress_expiry(self, dynamo_store, stubber):
        stale = in_progress(status=RecordStatus.COMPLETED, in_progress_expiry_timestamp=None)
        stubber.add_response(
            "put_item",
            {},
            {
                "TableName": TABLE,
                "Item": ANY,
                "ConditionExpression": (
                    "attribute_not_exists(#id) OR "
                    "(#expiry = :expected_expiry AND attribute_not_exists(#in_progress_expiry))"
                ),
                "ExpressionAttributeNames": ANY,
                "ExpressionAttributeValues": {":expected_expiry": {"N": str(NOW + 3600)}},
            },
        )
        await dynamo_store.put_in_progress(in_progress(), NOW, replace=stale)

    @pytest.mark.asyncio
    async def test_condition_failure(self, dynamo_store, stubber):
        stubber.add_client_error(
            "put_item",
            service_error_code="ConditionalCheckFailedException",
            http_status_code=400,
        )
        with pytest.raises(ConditionalCheckFailedError) as exc_info:
            await dynamo_store.put_in_progress(in_progress(), NOW)
        assert exc_info.value.key == "fn#abc"

    @pytest.mark.asyncio
    async def test_other_client_error(self, dynamo_store, stubber):
        stubber.add_client_error(
            "put_item",
            service_error_code="ProvisionedThroughputExceededException",
            http_status_code=400,
        )
        with pytest.raises(PersistenceConnectionError):
            await dynamo_store.put_in_progress(in_progress(), NOW)

    @pytest.mark.asyncio
    async def test_shared_table_key(self, client, stubber):
        store = DynamoDBPersistenceStore(
            table_name=TABLE,
            key_attr="pk",
            sort_key_attr="sk",
            static_pk_value="idempotency#orders",
            boto3_client=client,
        )
        stubber.add_response(
            "put_item",
            {},
            {
                "TableName": TABLE,
                "Item": {
                    "pk": {"S": "idempotency#orders"},
                    "sk": {"S": "fn#abc"},
                    "status": {"S": "INPROGRESS"},
                    "expiration": {"N": str(NOW + 3600)},
                    "in_progress_expiration": {"N": str(NOW + 30)},
                    "validation": {"S": "h1"},
                },
                "ConditionExpression": ANY,
                "ExpressionAttributeNames": ANY,
                "ExpressionAttributeValues": ANY,
            },
        )
        await store.put_in_progress(in_progress(), NOW)


class TestUpdateComplete:
    @pytest.mark.asyncio
    async def test_update_complete(self, dynamo_store, stubber):
        stubber.add_response(
            "update_item",
            {},
            {
                "TableName": TABLE,
                "Key": {"id": {"S": "fn#abc"}},
                "UpdateExpression": (
                    "SET #data = :data, #expiry = :expiry, #status = :status "
                    "REMOVE #in_progress_expiry"
                ),
                "ConditionExpression": "attribute_exists(#id)",
                "ExpressionAttributeNames": {
                    "#id": "id",
                    "#data": "data",
                    "#expiry": "expiration",
                    "#status": "status",
                    "#in_progress_expiry": "in_progress_expiration",
                },
                "ExpressionAttributeValues": {
                    ":data": {"S": '{"ok":true}'},
                    ":expiry": {"N": str(NOW + 3600)},
                    ":status": {"S": "COMPLETED"},
                },
            },
        )
        await dynamo_store.update_complete("fn#abc", '{"ok":true}', NOW + 3600)

    @pytest.mark.asyncio
    async def test_update_missing_record(self, dynamo_store, stubber):
        stubber.add_client_error(
            "update_item",
            service_error_code="ConditionalCheckFailedException",
            http_status_code=400,
        )
        with pytest.raises(RecordNotFoundError):
            await dynamo_store.update_complete("fn#abc", "null", NOW)


class TestGetAndDelete:
    @pytest.mark.asyncio
    async def test_get_completed_item(self, dynamo_store, stubber):
        stubber.add_response(
            "get_item",
            {
                "Item": {
                    "id": {"S": "fn#abc"},
                    "status": {"S": "COMPLETED"},
                    "expiration": {"N": str(NOW + 3600)},
                    "data": {"S": '{"ok":true}'},
                    "validation": {"S": "h1"},
                }
            },
            {"TableName": TABLE, "Key": {"id": {"S": "fn#abc"}}, "ConsistentRead": True},
        )
        record = await dynamo_store.get("fn#abc")
        assert record is not None
        assert record.status is RecordStatus.COMPLETED
        assert record.expiry_timestamp == NOW + 3600
        assert record.in_progress_expiry_timestamp is None
        assert record.response_data == '{"ok":true}'
        assert record.payload_hash == "h1"

    @pytest.mark.asyncio
    async def test_get_in_progress_item(self, dynamo_store, stubber):
        stubber.add_response(
            "get_item",
            {
                "Item": {
                    "id": {"S": "fn#abc"},
                    "status": {"S": "INPROGRESS"},
                    "expiration": {"N": str(NOW + 3600)},
                    "in_progress_expiration": {"N": str(NOW + 30)},
                }
            },
            {"TableName": TABLE, "Key": {"id": {"S": "fn#abc"}}, "ConsistentRead": True},
        )
        record = await dynamo_store.get("fn#abc")
        assert record.status is RecordStatus.INPROGRESS
        assert record.in_progress_expiry_timestamp == NOW + 30
        assert record.response_data is None

    @pytest.mark.asyncio
    async def test_get_missing_item(self, dynamo_store, stubber):
        stubber.add_response("get_item", {}, {"TableName": TABLE, "Key": ANY, "ConsistentRead": True})
        assert await dynamo_store.get("fn#abc") is None

    @pytest.mark.asyncio
    async def test_get_client_error(self, dynamo_store, stubber):
        stubber.add_client_error("get_item", service_error_code="InternalServerError", http_status_code=500)
        with pytest.raises(PersistenceConnectionError):
            await dynamo_store.get("fn#abc")

    @pytest.mark.asyncio
    async def test_delete(self, dynamo_store, stubber):
        stubber.add_response("delete_item", {}, {"TableName": TABLE, "Key": {"id": {"S": "fn#abc"}}})
        await dynamo_store.delete("fn#abc")

    @pytest.mark.asyncio
    async def test_delete_client_error(self, dynamo_store, stubber):
        stubber.add_client_error("delete_item", service_error_code="InternalServerError", http_status_code=500)
        with pytest.raises(PersistenceConnectionError):
            await dynamo_store.delete("fn#abc")


class UnreachableClient:
    """Client whose every call fails before reaching DynamoDB."""

    def get_item(self, **kwargs):
        raise EndpointConnectionError(endpoint_url="https://dynamodb.us-east-1.amazonaws.com")


class TestTransportErrors:
    @pytest.mark.asyncio
    async def test_botocore_error_is_wrapped(self):
        store = DynamoDBPersistenceStore(table_name=TABLE, boto3_client=UnreachableClient())
        with pytest.raises(PersistenceConnectionError) as exc_info:
            await store.get("fn#abc")
        assert isinstance(exc_info.value.cause, EndpointConnectionError)

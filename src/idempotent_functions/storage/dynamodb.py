"""DynamoDB persistence store.

Records are stored one item per idempotency key. Conditional writes use
DynamoDB condition expressions, so mutual exclusion is enforced by the table
itself and the store is safe across any number of concurrent Lambda
environments. Configure the table's TTL attribute to ``expiry_attr`` so
DynamoDB removes expired items natively.

Item layout (default attribute names)::

    id                      S   "<scope>#<digest>"
    status                  S   INPROGRESS | COMPLETED
    expiration              N   epoch seconds (table TTL attribute)
    in_progress_expiration  N   epoch seconds, INPROGRESS items only
    data                    S   JSON result, COMPLETED items only
    validation              S   payload validation hash, if enabled

With ``sort_key_attr`` set, a shared table is used: ``key_attr`` holds the
static partition value (``"idempotency#<function name>"`` by default) and
``sort_key_attr`` holds the idempotency key.

boto3 is synchronous, so every call runs in a worker thread.

Examples:
    Dedicated table::

        store = DynamoDBPersistenceStore(table_name="IdempotencyTable")

    Shared single-table design::

        store = DynamoDBPersistenceStore(
            table_name="AppTable",
            key_attr="pk",
            sort_key_attr="sk",
            static_pk_value="idempotency#orders-service",
        )
"""

import asyncio
import math
import os
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from idempotent_functions.exceptions import (
    ConditionalCheckFailedError,
    PersistenceConnectionError,
    RecordNotFoundError,
)
from idempotent_functions.models import IdempotencyRecord, RecordStatus
from idempotent_functions.observability.logging import get_logger
from idempotent_functions.storage.base import PersistenceStore

logger = get_logger(__name__)

LAMBDA_FUNCTION_NAME_ENV = "AWS_LAMBDA_FUNCTION_NAME"


class DynamoDBPersistenceStore(PersistenceStore):
    """Persistence store backed by a DynamoDB table.

    Attributes:
        table_name: Name of the DynamoDB table.
        key_attr: Partition key attribute name.
        sort_key_attr: Sort key attribute name for shared tables, or None.
        static_pk_value: Partition key value used when sort_key_attr is set.
    """

    def __init__(
        self,
        table_name: str,
        key_attr: str = "id",
        expiry_attr: str = "expiration",
        in_progress_expiry_attr: str = "in_progress_expiration",
        status_attr: str = "status",
        data_attr: str = "data",
        validation_key_attr: str = "validation",
        sort_key_attr: str | None = None,
        static_pk_value: str | None = None,
        boto_config: Config | None = None,
        boto3_session: boto3.session.Session | None = None,
        boto3_client: Any = None,
    ) -> None:
        """Initialize the store.

        Args:
            table_name: Name of the DynamoDB table.
            key_attr: Partition key attribute name.
            expiry_attr: Attribute holding the record expiry (table TTL).
            in_progress_expiry_attr: Attribute holding the in-progress expiry.
            status_attr: Attribute holding the record status.
            data_attr: Attribute holding the JSON result.
            validation_key_attr: Attribute holding the payload validation hash.
            sort_key_attr: Sort key attribute name for shared tables.
            static_pk_value: Partition value when sort_key_attr is set.
                Defaults to ``"idempotency#<AWS_LAMBDA_FUNCTION_NAME>"``.
            boto_config: botocore Config for the client.
            boto3_session: Session used to create the client.
            boto3_client: Preconfigured low-level DynamoDB client.

        Raises:
            ValueError: If key_attr and sort_key_attr are the same.
        """
        if sort_key_attr is not None and sort_key_attr == key_attr:
            raise ValueError(f"key_attr [{key_attr}] and sort_key_attr [{sort_key_attr}] cannot be the same")

        if static_pk_value is None:
            static_pk_value = f"idempotency#{os.environ.get(LAMBDA_FUNCTION_NAME_ENV, '')}"

        if boto3_client is None:
            session = boto3_session or boto3.session.Session()
            boto3_client = session.client("dynamodb", config=boto_config or Config())

        self.table_name = table_name
        self.key_attr = key_attr
        self.expiry_attr = expiry_attr
        self.in_progress_expiry_attr = in_progress_expiry_attr
        self.status_attr = status_attr
        self.data_attr = data_attr
        self.validation_key_attr = validation_key_attr
        self.sort_key_attr = sort_key_attr
        self.static_pk_value = static_pk_value
        self._client = boto3_client

    def _key(self, idempotency_key: str) -> dict[str, dict[str, str]]:
        if self.sort_key_attr:
            return {
                self.key_attr: {"S": self.static_pk_value},
                self.sort_key_attr: {"S": idempotency_key},
            }
        return {self.key_attr: {"S": idempotency_key}}

    def _item_to_record(self, item: dict[str, Any]) -> IdempotencyRecord:
        key_attr = self.sort_key_attr or self.key_attr
        in_progress_expiry = item.get(self.in_progress_expiry_attr)
        data = item.get(self.data_attr)
        validation = item.get(self.validation_key_attr)
        return IdempotencyRecord(
            idempotency_key=item[key_attr]["S"],
            status=RecordStatus(item[self.status_attr]["S"]),
            expiry_timestamp=int(item[self.expiry_attr]["N"]),
            in_progress_expiry_timestamp=(
                int(in_progress_expiry["N"]) if in_progress_expiry is not None else None
            ),
            response_data=data["S"] if data is not None else None,
            payload_hash=validation["S"] if validation is not None else None,
        )

    async def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        method = getattr(self._client, operation)
        try:
            return await asyncio.to_thread(method, TableName=self.table_name, **kwargs)
        except BotoCoreError as e:
            logger.error(
                "idempotency.store_error",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PersistenceConnectionError(
                message=f"DynamoDB {operation} failed: {e}",
                cause=e,
            ) from e

    async def put_in_progress(
        self,
        record: IdempotencyRecord,
        now: float,
        replace: IdempotencyRecord | None = None,
    ) -> None:
        """Conditionally write a new INPROGRESS item.

        Raises:
            ConditionalCheckFailedError: If the condition expression fails.
            PersistenceConnectionError: On any other client error.
        """
        item: dict[str, Any] = {
            **self._key(record.idempotency_key),
            self.status_attr: {"S": record.status.value},
            self.expiry_attr: {"N": str(record.expiry_timestamp)},
        }
        if record.in_progress_expiry_timestamp is not None:
            item[self.in_progress_expiry_attr] = {"N": str(record.in_progress_expiry_timestamp)}
        if record.payload_hash is not None:
            item[self.validation_key_attr] = {"S": record.payload_hash}

        names = {"#id": self.key_attr, "#expiry": self.expiry_attr}
        values: dict[str, Any]
        if replace is None:
            # Free slot, expired record, or abandoned in-progress record
            condition = (
                "attribute_not_exists(#id) OR #expiry < :now OR "
                "(#status = :inprogress AND attribute_exists(#in_progress_expiry) "
                "AND #in_progress_expiry < :now)"
            )
            names["#status"] = self.status_attr
            names["#in_progress_expiry"] = self.in_progress_expiry_attr
            values = {
                ":now": {"N": str(math.ceil(now))},
                ":inprogress": {"S": RecordStatus.INPROGRESS.value},
            }
        else:
            values = {":expected_expiry": {"N": str(replace.expiry_timestamp)}}
            names["#in_progress_expiry"] = self.in_progress_expiry_attr
            if replace.in_progress_expiry_timestamp is None:
                in_progress_condition = "attribute_not_exists(#in_progress_expiry)"
            else:
                in_progress_condition = "#in_progress_expiry = :expected_in_progress_expiry"
                values[":expected_in_progress_expiry"] = {
                    "N": str(replace.in_progress_expiry_timestamp)
                }
            condition = (
                f"attribute_not_exists(#id) OR "
                f"(#expiry = :expected_expiry AND {in_progress_condition})"
            )

        try:
            await self._call(
                "put_item",
                Item=item,
                ConditionExpression=condition,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
            )
        except ClientError as e:
            if _error_code(e) == "ConditionalCheckFailedException":
                raise ConditionalCheckFailedError(
                    message=f"Live record already exists for key {record.idempotency_key}",
                    key=record.idempotency_key,
                ) from e
            raise PersistenceConnectionError(
                message=f"Failed to put record for key {record.idempotency_key}: {e}",
                cause=e,
            ) from e

    async def update_complete(
        self,
        key: str,
        response_data: str,
        expiry_timestamp: int,
    ) -> None:
        """Mark the item COMPLETED, store the result and refresh its expiry.

        Raises:
            RecordNotFoundError: If the item no longer exists.
            PersistenceConnectionError: On any other client error.
        """
        try:
            await self._call(
                "update_item",
                Key=self._key(key),
                UpdateExpression=(
                    "SET #data = :data, #expiry = :expiry, #status = :status "
                    "REMOVE #in_progress_expiry"
                ),
                ConditionExpression="attribute_exists(#id)",
                ExpressionAttributeNames={
                    "#id": self.key_attr,
                    "#data": self.data_attr,
                    "#expiry": self.expiry_attr,
                    "#status": self.status_attr,
                    "#in_progress_expiry": self.in_progress_expiry_attr,
                },
                ExpressionAttributeValues={
                    ":data": {"S": response_data},
                    ":expiry": {"N": str(expiry_timestamp)},
                    ":status": {"S": RecordStatus.COMPLETED.value},
                },
            )
        except ClientError as e:
            if _error_code(e) == "ConditionalCheckFailedException":
                raise RecordNotFoundError(
                    message=f"No record to complete for key {key}",
                    key=key,
                ) from e
            raise PersistenceConnectionError(
                message=f"Failed to update record for key {key}: {e}",
                cause=e,
            ) from e

    async def get(self, key: str) -> IdempotencyRecord | None:
        try:
            response = await self._call("get_item", Key=self._key(key), ConsistentRead=True)
        except ClientError as e:
            raise PersistenceConnectionError(
                message=f"Failed to get record for key {key}: {e}",
                cause=e,
            ) from e

        item = response.get("Item")
        if item is None:
            return None
        return self._item_to_record(item)

    async def delete(self, key: str) -> None:
        try:
            await self._call("delete_item", Key=self._key(key))
        except ClientError as e:
            raise PersistenceConnectionError(
                message=f"Failed to delete record for key {key}: {e}",
                cause=e,
            ) from e


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))

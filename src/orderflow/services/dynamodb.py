"""DynamoDB service wrapper for the pipeline tables.

Conditional writes are the pipeline's only cross-writer synchronization, so
the wrapper reports a failed condition as a return value instead of an
exception. Throttling, 5xx and connection failures are raised as
StorageUnavailableError so the retry coordinator can classify them.
"""

import os
import threading
from typing import Any

import boto3
from boto3.dynamodb.conditions import Key
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError

from orderflow.models.errors import StorageUnavailableError
from orderflow.utils.logging import get_logger

logger = get_logger(__name__)

# Module-level singleton for connection reuse
_dynamodb_service_instance: "DynamoDBService | None" = None

# DynamoDB error codes that indicate a transient fault
TRANSIENT_ERROR_CODES: set[str] = {
    "ProvisionedThroughputExceededException",
    "RequestLimitExceeded",
    "ThrottlingException",
    "InternalServerError",
    "ServiceUnavailable",
    "TransactionInProgressException",
}

_serializer = TypeSerializer()


def get_dynamodb_service(
    environment: str | None = None,
    table_prefix: str | None = None,
) -> "DynamoDBService":
    """Get or create the singleton DynamoDB service instance.

    Args:
        environment: Environment name. Only used on first call.
        table_prefix: Table name prefix. Only used on first call.

    Returns:
        Shared DynamoDBService instance
    """
    global _dynamodb_service_instance
    if _dynamodb_service_instance is None:
        _dynamodb_service_instance = DynamoDBService(environment, table_prefix)
    return _dynamodb_service_instance


def reset_dynamodb_service() -> None:
    """Reset the singleton instance (for testing only).

    This allows tests to create a fresh DynamoDBService inside
    a mock_aws context.
    """
    global _dynamodb_service_instance
    _dynamodb_service_instance = None


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "Unknown")


def _storage_error(operation: str, table: str, error: Exception) -> StorageUnavailableError:
    logger.warning("DynamoDB %s on %s failed transiently: %s", operation, table, error)
    return StorageUnavailableError(
        details={"operation": operation, "table": table, "error": str(error)}
    )


class DynamoDBService:
    """Service for DynamoDB operations with environment-aware table names."""

    def __init__(
        self,
        environment: str | None = None,
        table_prefix: str | None = None,
    ) -> None:
        """Initialize DynamoDB service.

        Args:
            environment: Environment name (dev/prod). Defaults to ENVIRONMENT env var.
            table_prefix: Table name prefix. Defaults to DYNAMODB_TABLE_PREFIX
                env var, then ``orderflow-{environment}``.
        """
        self.environment = environment or os.getenv("ENVIRONMENT", "dev")
        self.name_prefix = table_prefix or os.getenv(
            "DYNAMODB_TABLE_PREFIX", f"orderflow-{self.environment}"
        )
        # Clients are thread-safe; resources are not, so each thread builds its own
        self._client = boto3.client("dynamodb")
        self._local = threading.local()

    def table_name(self, table: str) -> str:
        """Get full table name with prefix."""
        return f"{self.name_prefix}-{table}"

    def _resource(self) -> Any:
        """DynamoDB resource owned by the calling thread."""
        resource = getattr(self._local, "resource", None)
        if resource is None:
            resource = boto3.session.Session().resource("dynamodb")
            self._local.resource = resource
        return resource

    def _get_table(self, table: str) -> Any:
        """Get DynamoDB table resource."""
        return self._resource().Table(self.table_name(table))

    @property
    def client(self) -> Any:
        return self._client

    # Generic CRUD operations

    def get_item(
        self,
        table: str,
        key: dict[str, Any],
        consistent_read: bool = True,
    ) -> dict[str, Any] | None:
        """Get a single item by key.

        Args:
            table: Table name without prefix
            key: Primary key dict
            consistent_read: Use a strongly consistent read

        Returns:
            Item dict or None if not found
        """
        try:
            response = self._get_table(table).get_item(
                Key=key, ConsistentRead=consistent_read
            )
        except ClientError as e:
            if _error_code(e) in TRANSIENT_ERROR_CODES:
                raise _storage_error("get_item", table, e) from e
            raise
        except BotoCoreError as e:
            raise _storage_error("get_item", table, e) from e
        item: dict[str, Any] | None = response.get("Item")
        return item

    def put_item(
        self,
        table: str,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
        expression_attribute_names: dict[str, str] | None = None,
    ) -> bool:
        """Put an item into the table.

        Args:
            table: Table name without prefix
            item: Item to store
            condition_expression: Optional condition for write
            expression_attribute_values: Values for the condition
            expression_attribute_names: Names for the condition (for reserved words)

        Returns:
            True if successful, False if condition failed
        """
        try:
            kwargs: dict[str, Any] = {"Item": item}
            if condition_expression:
                kwargs["ConditionExpression"] = condition_expression
            if expression_attribute_values:
                kwargs["ExpressionAttributeValues"] = expression_attribute_values
            if expression_attribute_names:
                kwargs["ExpressionAttributeNames"] = expression_attribute_names

            self._get_table(table).put_item(**kwargs)
            return True
        except ClientError as e:
            if _error_code(e) == "ConditionalCheckFailedException":
                return False
            if _error_code(e) in TRANSIENT_ERROR_CODES:
                raise _storage_error("put_item", table, e) from e
            raise
        except BotoCoreError as e:
            raise _storage_error("put_item", table, e) from e

    def update_item(
        self,
        table: str,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_values: dict[str, Any],
        expression_attribute_names: dict[str, str] | None = None,
        condition_expression: str | None = None,
    ) -> dict[str, Any] | None:
        """Update an item with expressions.

        Args:
            table: Table name without prefix
            key: Primary key dict
            update_expression: DynamoDB update expression
            expression_attribute_values: Values for expression
            expression_attribute_names: Names for expression (for reserved words)
            condition_expression: Optional condition for update

        Returns:
            Updated attributes or None if condition failed
        """
        try:
            kwargs: dict[str, Any] = {
                "Key": key,
                "UpdateExpression": update_expression,
                "ExpressionAttributeValues": expression_attribute_values,
                "ReturnValues": "ALL_NEW",
            }
            if expression_attribute_names:
                kwargs["ExpressionAttributeNames"] = expression_attribute_names
            if condition_expression:
                kwargs["ConditionExpression"] = condition_expression

            response = self._get_table(table).update_item(**kwargs)
            attrs: dict[str, Any] | None = response.get("Attributes")
            return attrs
        except ClientError as e:
            if _error_code(e) == "ConditionalCheckFailedException":
                return None
            if _error_code(e) in TRANSIENT_ERROR_CODES:
                raise _storage_error("update_item", table, e) from e
            raise
        except BotoCoreError as e:
            raise _storage_error("update_item", table, e) from e

    def delete_item(
        self,
        table: str,
        key: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
        expression_attribute_names: dict[str, str] | None = None,
    ) -> bool:
        """Delete an item by key.

        Args:
            table: Table name without prefix
            key: Primary key dict
            condition_expression: Optional condition for delete
            expression_attribute_values: Values for the condition
            expression_attribute_names: Names for the condition (for reserved words)

        Returns:
            True if deleted (or didn't exist), False if condition failed
        """
        try:
            kwargs: dict[str, Any] = {"Key": key}
            if condition_expression:
                kwargs["ConditionExpression"] = condition_expression
            if expression_attribute_values:
                kwargs["ExpressionAttributeValues"] = expression_attribute_values
            if expression_attribute_names:
                kwargs["ExpressionAttributeNames"] = expression_attribute_names

            self._get_table(table).delete_item(**kwargs)
            return True
        except ClientError as e:
            if _error_code(e) == "ConditionalCheckFailedException":
                return False
            if _error_code(e) in TRANSIENT_ERROR_CODES:
                raise _storage_error("delete_item", table, e) from e
            raise
        except BotoCoreError as e:
            raise _storage_error("delete_item", table, e) from e

    def query(
        self,
        table: str,
        key_condition: Any,
        index_name: str | None = None,
        filter_expression: Any | None = None,
    ) -> list[dict[str, Any]]:
        """Query table or GSI, following pagination.

        Args:
            table: Table name without prefix
            key_condition: Boto3 Key condition
            index_name: GSI name (optional)
            filter_expression: Additional filter (optional)

        Returns:
            List of items
        """
        kwargs: dict[str, Any] = {"KeyConditionExpression": key_condition}
        if index_name:
            kwargs["IndexName"] = index_name
        if filter_expression is not None:
            kwargs["FilterExpression"] = filter_expression

        items: list[dict[str, Any]] = []
        try:
            while True:
                response = self._get_table(table).query(**kwargs)
                items.extend(response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                kwargs["ExclusiveStartKey"] = last_key
        except ClientError as e:
            if _error_code(e) in TRANSIENT_ERROR_CODES:
                raise _storage_error("query", table, e) from e
            raise
        except BotoCoreError as e:
            raise _storage_error("query", table, e) from e

        return items

    def transact_write(
        self,
        items: list[dict[str, Any]],
    ) -> bool:
        """Execute transactional write for multiple items.

        Args:
            items: List of TransactWriteItem dicts (see ``conditional_put``)

        Returns:
            True if successful, False if a condition check failed
        """
        try:
            self._client.transact_write_items(TransactItems=items)
            return True
        except ClientError as e:
            code = _error_code(e)
            if code == "TransactionCanceledException":
                reasons = e.response.get("CancellationReasons", [])
                if any(r.get("Code") == "TransactionConflict" for r in reasons):
                    raise _storage_error("transact_write", "*", e) from e
                return False
            if code in TRANSIENT_ERROR_CODES or code == "TransactionConflictException":
                raise _storage_error("transact_write", "*", e) from e
            raise
        except BotoCoreError as e:
            raise _storage_error("transact_write", "*", e) from e

    # Convenience methods for common patterns

    def conditional_put(
        self,
        table: str,
        item: dict[str, Any],
        condition_expression: str,
    ) -> dict[str, Any]:
        """Build a TransactWriteItem Put for ``transact_write``.

        Args:
            table: Table name without prefix
            item: Item to store (plain Python values)
            condition_expression: Condition for the put

        Returns:
            TransactWriteItem dict with serialized attribute values
        """
        return {
            "Put": {
                "TableName": self.table_name(table),
                "Item": {k: _serializer.serialize(v) for k, v in item.items()},
                "ConditionExpression": condition_expression,
            }
        }

    def query_by_gsi(
        self,
        table: str,
        index_name: str,
        partition_key_name: str,
        partition_key_value: str,
        filter_expression: Any | None = None,
    ) -> list[dict[str, Any]]:
        """Query a GSI by partition key.

        Args:
            table: Table name without prefix
            index_name: GSI name
            partition_key_name: Name of partition key attribute
            partition_key_value: Value to query
            filter_expression: Optional filter on non-key attributes

        Returns:
            List of items
        """
        return self.query(
            table,
            Key(partition_key_name).eq(partition_key_value),
            index_name=index_name,
            filter_expression=filter_expression,
        )

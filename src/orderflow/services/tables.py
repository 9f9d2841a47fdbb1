"""DynamoDB table names and definitions for the pipeline.

Table names here are unprefixed; DynamoDBService adds the environment
prefix (``orderflow-dev-orders`` and so on).
"""

from typing import Any

EVENTS_TABLE = "payment-events"
EVENT_KEYS_TABLE = "payment-event-keys"
ORDERS_TABLE = "orders"
AUDIT_TABLE = "order-audit-log"
LOCKS_TABLE = "order-locks"

EVENT_STATUS_INDEX = "status-index"
AUDIT_EVENT_INDEX = "event_id-index"
AUDIT_ORDER_INDEX = "order_id-index"


def table_definitions(prefix: str) -> list[dict[str, Any]]:
    """Return ``create_table`` arguments for every pipeline table.

    Args:
        prefix: Table name prefix, e.g. ``orderflow-dev``

    Returns:
        List of kwargs dicts for ``DynamoDB.Client.create_table``
    """
    return [
        {
            "TableName": f"{prefix}-{EVENTS_TABLE}",
            "KeySchema": [{"AttributeName": "event_id", "KeyType": "HASH"}],
            "AttributeDefinitions": [
                {"AttributeName": "event_id", "AttributeType": "S"},
                {"AttributeName": "status", "AttributeType": "S"},
                {"AttributeName": "received_at", "AttributeType": "S"},
            ],
            "GlobalSecondaryIndexes": [
                {
                    "IndexName": EVENT_STATUS_INDEX,
                    "KeySchema": [
                        {"AttributeName": "status", "KeyType": "HASH"},
                        {"AttributeName": "received_at", "KeyType": "RANGE"},
                    ],
                    "Projection": {"ProjectionType": "ALL"},
                },
            ],
            "BillingMode": "PAY_PER_REQUEST",
        },
        {
            "TableName": f"{prefix}-{EVENT_KEYS_TABLE}",
            "KeySchema": [{"AttributeName": "idempotency_key", "KeyType": "HASH"}],
            "AttributeDefinitions": [
                {"AttributeName": "idempotency_key", "AttributeType": "S"},
            ],
            "BillingMode": "PAY_PER_REQUEST",
        },
        {
            "TableName": f"{prefix}-{ORDERS_TABLE}",
            "KeySchema": [{"AttributeName": "order_id", "KeyType": "HASH"}],
            "AttributeDefinitions": [
                {"AttributeName": "order_id", "AttributeType": "S"},
            ],
            "BillingMode": "PAY_PER_REQUEST",
        },
        {
            "TableName": f"{prefix}-{AUDIT_TABLE}",
            "KeySchema": [{"AttributeName": "audit_id", "KeyType": "HASH"}],
            "AttributeDefinitions": [
                {"AttributeName": "audit_id", "AttributeType": "S"},
                {"AttributeName": "event_id", "AttributeType": "S"},
                {"AttributeName": "order_id", "AttributeType": "S"},
                {"AttributeName": "timestamp", "AttributeType": "S"},
            ],
            "GlobalSecondaryIndexes": [
                {
                    "IndexName": AUDIT_EVENT_INDEX,
                    "KeySchema": [
                        {"AttributeName": "event_id", "KeyType": "HASH"},
                        {"AttributeName": "timestamp", "KeyType": "RANGE"},
                    ],
                    "Projection": {"ProjectionType": "ALL"},
                },
                {
                    "IndexName": AUDIT_ORDER_INDEX,
                    "KeySchema": [
                        {"AttributeName": "order_id", "KeyType": "HASH"},
                        {"AttributeName": "timestamp", "KeyType": "RANGE"},
                    ],
                    "Projection": {"ProjectionType": "ALL"},
                },
            ],
            "BillingMode": "PAY_PER_REQUEST",
        },
        {
            "TableName": f"{prefix}-{LOCKS_TABLE}",
            "KeySchema": [{"AttributeName": "lock_key", "KeyType": "HASH"}],
            "AttributeDefinitions": [
                {"AttributeName": "lock_key", "AttributeType": "S"},
            ],
            "BillingMode": "PAY_PER_REQUEST",
            "TimeToLiveSpecification": {
                "AttributeName": "expires_at",
                "Enabled": True,
            },
        },
    ]


def create_tables(client: Any, prefix: str) -> list[str]:
    """Create all pipeline tables.

    Args:
        client: boto3 DynamoDB client
        prefix: Table name prefix

    Returns:
        Names of the created tables
    """
    created = []
    for table_config in table_definitions(prefix):
        # TimeToLiveSpecification needs to be set after table creation
        ttl_spec = table_config.pop("TimeToLiveSpecification", None)
        client.create_table(**table_config)
        created.append(table_config["TableName"])

        if ttl_spec:
            client.update_time_to_live(
                TableName=table_config["TableName"],
                TimeToLiveSpecification=ttl_spec,
            )
    return created

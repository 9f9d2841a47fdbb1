"""Operator command line for the order event pipeline.

Usage:
    orderflow create-tables
    orderflow create-order ORD-123
    orderflow ingest event.json
    orderflow process-retries
    orderflow list-exhausted

Table names come from ENVIRONMENT / DYNAMODB_TABLE_PREFIX, as for the
pipeline itself.
"""

import argparse
import sys
from pathlib import Path

from botocore.exceptions import ClientError
from pydantic import ValidationError

from orderflow.config import get_settings
from orderflow.dependencies import (
    get_event_processor,
    get_event_store,
    get_order_repository,
)
from orderflow.models import InboundEvent
from orderflow.services.dynamodb import get_dynamodb_service
from orderflow.services.tables import create_tables
from orderflow.utils.logging import configure_logging


def cmd_create_tables(args: argparse.Namespace) -> int:
    settings = get_settings()
    db = get_dynamodb_service(settings.environment, settings.table_prefix)
    print(f"Creating tables with prefix {db.name_prefix}...")
    try:
        created = create_tables(db.client, db.name_prefix)
    except ClientError as e:
        print(f"  Failed: {e}")
        return 1
    for name in created:
        print(f"  Created {name}")
    return 0


def cmd_create_order(args: argparse.Namespace) -> int:
    order = get_order_repository().create(args.order_id)
    print(order.model_dump_json(indent=2))
    return 0


def cmd_ingest(args: argparse.Namespace) -> int:
    try:
        inbound = InboundEvent.model_validate_json(Path(args.file).read_text())
    except (OSError, ValidationError) as e:
        print(f"Could not read event descriptor {args.file}: {e}")
        return 2

    result = get_event_processor().process(inbound)
    print(result.model_dump_json(indent=2))
    return 0 if result.http_status < 300 else 1


def cmd_process_retries(args: argparse.Namespace) -> int:
    results = get_event_processor().process_due_retries()
    print(f"Replayed {len(results)} due retries")
    for result in results:
        print(f"  {result.event_id}: {result.outcome.value} ({result.http_status})")
    return 0


def cmd_list_exhausted(args: argparse.Namespace) -> int:
    records = get_event_store().list_exhausted()
    print(f"{len(records)} exhausted events")
    for record in records:
        print(
            f"  {record.event_id} {record.event_type} order={record.order_id} "
            f"retries={record.retry_count} code={record.error_code.value if record.error_code else '-'}"
        )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="orderflow",
        description="Operate the order event pipeline",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Log level (default: INFO)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    create_tables_parser = subparsers.add_parser(
        "create-tables", help="Create the pipeline DynamoDB tables"
    )
    create_tables_parser.set_defaults(func=cmd_create_tables)

    create_order_parser = subparsers.add_parser(
        "create-order", help="Create an order at pending_payment"
    )
    create_order_parser.add_argument("order_id", help="Order ID")
    create_order_parser.set_defaults(func=cmd_create_order)

    ingest_parser = subparsers.add_parser(
        "ingest", help="Process a JSON event descriptor and print the result"
    )
    ingest_parser.add_argument("file", help="Path to the event descriptor JSON")
    ingest_parser.set_defaults(func=cmd_ingest)

    retries_parser = subparsers.add_parser(
        "process-retries", help="Replay retry_scheduled events that are due"
    )
    retries_parser.set_defaults(func=cmd_process_retries)

    exhausted_parser = subparsers.add_parser(
        "list-exhausted", help="List events awaiting manual reconciliation"
    )
    exhausted_parser.set_defaults(func=cmd_list_exhausted)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    return int(args.func(args))


if __name__ == "__main__":
    sys.exit(main())

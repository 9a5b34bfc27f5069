"""
DynamoDB demo workload: PutItem, GetItem and Scan.

Each call is traced automatically by the botocore instrumentation and
metered through ``OperationMetrics.record_operation``. boto3 is blocking, so
every call runs in a worker thread to keep the event loop free.
"""
import asyncio
import json
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import boto3
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.config import Config
from botocore.exceptions import ClientError
from opentelemetry import trace

from otel_dynamodb_demo.observability.logging_config import get_logger
from otel_dynamodb_demo.observability.metering import OperationMetrics

logger = get_logger(__name__)

SCAN_LIMIT = 5
DEMO_MESSAGE = "Hello from OTel demo"

# A cancelled call keeps its worker thread until boto3 gives up, so give up early
CONNECT_TIMEOUT_SECONDS = 3
READ_TIMEOUT_SECONDS = 5
MAX_ATTEMPTS = 2

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def create_dynamodb_client(region: str) -> Any:
    """Low-level DynamoDB client for ``region`` with short timeouts and few retries."""
    return boto3.client(
        "dynamodb",
        region_name=region,
        config=Config(
            connect_timeout=CONNECT_TIMEOUT_SECONDS,
            read_timeout=READ_TIMEOUT_SECONDS,
            retries={"max_attempts": MAX_ATTEMPTS, "mode": "standard"},
        ),
    )


def to_attribute_values(item: Dict[str, Any]) -> Dict[str, Any]:
    return {key: _serializer.serialize(value) for key, value in item.items()}


def from_attribute_values(item: Dict[str, Any]) -> Dict[str, Any]:
    return {key: _deserializer.deserialize(value) for key, value in item.items()}


def error_code(exc: BaseException) -> Optional[str]:
    """AWS error code of a botocore ClientError, else None."""
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code")
    return None


class DynamoDBDemo:
    """
    One pass of the demo workload against a single table.

    Args:
        client: boto3 DynamoDB client
        table_name: Target table (partition key ``id``, String)
        operation_metrics: Metered wrapper shared by all calls
        tracer: Tracer for the per-run parent span (optional)
    """

    def __init__(
        self,
        client: Any,
        table_name: str,
        operation_metrics: OperationMetrics,
        tracer: Optional[trace.Tracer] = None,
    ):
        self.client = client
        self.table_name = table_name
        self.operation_metrics = operation_metrics
        self.tracer = tracer or trace.get_tracer(__name__)

    async def _call(self, operation_name: str, method: str, **params: Any) -> Dict[str, Any]:
        api_call = getattr(self.client, method)
        return await self.operation_metrics.record_operation(
            operation_name,
            lambda: asyncio.to_thread(api_call, **params),
        )

    async def put_item(self, item: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call(
            "PutItem",
            "put_item",
            TableName=self.table_name,
            Item=to_attribute_values(item),
        )

    async def get_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        response = await self._call(
            "GetItem",
            "get_item",
            TableName=self.table_name,
            Key=to_attribute_values({"id": item_id}),
        )
        item = response.get("Item")
        return from_attribute_values(item) if item else None

    async def scan(self, limit: int = SCAN_LIMIT) -> Dict[str, Any]:
        response = await self._call("Scan", "scan", TableName=self.table_name, Limit=limit)
        items = [from_attribute_values(item) for item in response.get("Items", [])]
        return {"count": response.get("Count", 0), "items": items}

    async def run(self) -> None:
        """
        PutItem a fresh item, GetItem it back, Scan up to five items.

        Raises:
            ClientError (or any other failure) from the first call that fails,
            after logging it
        """
        log = logger.bind(table=self.table_name)
        item_id = f"item-{int(time.time() * 1000)}"
        item = {
            "id": item_id,
            "message": DEMO_MESSAGE,
            "ts": datetime.now(timezone.utc).isoformat(),
        }
        log.debug("demo_item_generated", item_id=item_id)

        with self.tracer.start_as_current_span("dynamodb-demo") as span:
            span.set_attribute("db.name", self.table_name)
            try:
                log.info("dynamodb_put_item")
                await self.put_item(item)
                log.info("dynamodb_put_item_ok", item_id=item_id)

                log.info("dynamodb_get_item")
                found = await self.get_item(item_id)
                if found:
                    log.debug("dynamodb_item", item=json.dumps(found, default=str))
                    log.info("dynamodb_get_item_ok", item_id=item_id)
                else:
                    log.info("dynamodb_get_item_not_found", item_id=item_id)

                log.info("dynamodb_scan", limit=SCAN_LIMIT)
                result = await self.scan()
                log.info("dynamodb_scan_ok", count=result["count"])
                log.debug(
                    "dynamodb_scan_items",
                    items=json.dumps(result["items"], default=str) if result["items"] else "(none)",
                )
            except Exception as exc:
                log.error("dynamodb_error", error=str(exc), error_code=error_code(exc))
                if error_code(exc) == "ResourceNotFoundException":
                    log.info(
                        "dynamodb_table_missing",
                        hint=(
                            f'Create a table named "{self.table_name}" with partition key '
                            '"id" (String) or set DYNAMODB_TABLE.'
                        ),
                    )
                raise

        log.info("dynamodb_demo_done")

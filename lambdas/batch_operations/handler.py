"""
BatchOperations Lambda Handler

Main entry point for the scheduled batch operations.

Trigger: EventBridge Scheduled Rule, e.g. rate(15 minutes)
Output: Processing summary

Flow:
1. Parse the operation and batch size from the event detail
2. Run the sweep
3. Return the affected document ids
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any

import structlog

from pipeline.processor.machine import DocumentJobStateMachine
from pipeline.processor.operations import BatchOperations
from pipeline.processor.wiring import (
    build_completion_poller,
    build_state_machine,
    configure_dead_letter_queues,
)

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

log = structlog.get_logger()

OPERATIONS = ("process_batch", "retry_failed", "await_extraction", "configure_dead_letter")
DEFAULT_BATCH_SIZE = 10

_operations: BatchOperations | None = None


def _get_operations() -> BatchOperations:
    """Batch operations shared by invocations in this container."""
    global _operations
    if _operations is None:
        machine: DocumentJobStateMachine = build_state_machine()
        _operations = BatchOperations(machine, poller=build_completion_poller())
    return _operations


@dataclass
class OperationResult:
    """Summary of one scheduled run."""

    operation: str
    document_ids: list[str] = field(default_factory=list)
    job: dict[str, Any] | None = None
    queue_urls: list[str] = field(default_factory=list)
    duration_ms: float = 0.0


def _parse_scheduled_event(event: dict[str, Any]) -> dict[str, Any]:
    """
    Read operation parameters from the event detail.

    Raises:
        ValueError: Unknown operation, bad batch size, or missing job_id
    """
    detail = event.get("detail", {})
    if isinstance(detail, str):
        detail = json.loads(detail) if detail else {}
    if not isinstance(detail, dict):
        detail = {}

    operation = detail.get("operation", "process_batch")
    if operation not in OPERATIONS:
        raise ValueError(f"Unknown operation '{operation}'. Expected one of {list(OPERATIONS)}")

    batch_size = int(detail.get("batch_size", DEFAULT_BATCH_SIZE))
    if batch_size < 1:
        raise ValueError("batch_size must be positive")

    job_id = detail.get("job_id")
    if operation == "await_extraction" and not job_id:
        raise ValueError("job_id is required for await_extraction")

    return {"operation": operation, "batch_size": batch_size, "job_id": job_id}


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    Main Lambda handler for scheduled batch operations.

    Args:
        event: EventBridge scheduled event with optional detail
        context: Lambda context

    Returns:
        {"statusCode", "body"}
    """
    start_time = time.time()

    try:
        config = _parse_scheduled_event(event)
    except (ValueError, TypeError) as e:
        log.warning("invalid_request", error=str(e))
        return {"statusCode": 400, "body": json.dumps({"error": str(e)})}

    log.info("batch_operation_started", **config)
    result = OperationResult(operation=config["operation"])

    try:
        if config["operation"] == "configure_dead_letter":
            result.queue_urls = configure_dead_letter_queues()
        elif config["operation"] == "process_batch":
            result.document_ids = _get_operations().process_batch(config["batch_size"])
        elif config["operation"] == "retry_failed":
            result.document_ids = _get_operations().retry_failed_documents(config["batch_size"])
        else:
            job = _get_operations().await_extraction(config["job_id"])
            if job is not None:
                result.job = {
                    "job_id": job.job_id,
                    "document_id": job.document_id,
                    "status": job.status.value,
                }
                result.document_ids = [job.document_id]
    except Exception as e:
        log.exception("batch_operation_failed", operation=config["operation"], error=str(e))
        return {
            "statusCode": 500,
            "body": json.dumps({"error": "Internal server error", "operation": config["operation"]}),
        }

    result.duration_ms = (time.time() - start_time) * 1000

    log.info(
        "batch_operation_completed",
        operation=result.operation,
        document_count=len(result.document_ids),
        duration_ms=result.duration_ms,
    )

    return {
        "statusCode": 200,
        "body": json.dumps({
            "operation": result.operation,
            "document_ids": result.document_ids,
            "job": result.job,
            "queue_urls": result.queue_urls,
            "duration_ms": round(result.duration_ms, 2),
        }),
    }

"""
Ingest Lambda Handler

Main entry point for the ingest queue consumer.

Trigger: SQS ingest queue
Output: SQS partial batch response

Flow:
1. Parse each record body into ingest messages
2. Run ingest (job creation, extraction start) per message
3. Return batchItemFailures for records that raised
"""

from functools import partial
from typing import Any

import structlog

from pipeline.shared.config import get_settings
from pipeline.shared.models import ingest_messages_from_body
from pipeline.processor.batch import process_batch_records
from pipeline.processor.machine import DocumentJobStateMachine
from pipeline.processor.wiring import build_state_machine

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

_machine: DocumentJobStateMachine | None = None


def _get_machine() -> DocumentJobStateMachine:
    """State machine shared by invocations in this container."""
    global _machine
    if _machine is None:
        _machine = build_state_machine()
    return _machine


def _handle_record(machine: DocumentJobStateMachine, record: dict[str, Any]) -> None:
    messages = ingest_messages_from_body(record.get("body", ""))
    if not messages:
        log.info("ingest_record_empty", message_id=record.get("messageId"))
        return

    for message in messages:
        job = machine.ingest(message)
        log.info(
            "document_ingested",
            message_id=record.get("messageId"),
            job_id=job.job_id,
            document_id=job.document_id,
            status=job.status.value,
        )


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    AWS Lambda entry point for the ingest queue.

    Args:
        event: SQS event with Records
        context: Lambda execution context

    Returns:
        {"batchItemFailures": [{"itemIdentifier": messageId}, ...]}
    """
    records = event.get("Records", [])
    log.info("lambda_invoked", handler="ingest", record_count=len(records))

    if not records:
        return {"batchItemFailures": []}

    # Built before the worker threads start so they share one machine.
    machine = _get_machine()
    result = process_batch_records(
        records,
        partial(_handle_record, machine),
        max_workers=get_settings().batch_max_workers,
    )
    return result.to_response()

"""
Classification Lambda Handler

Main entry point for the classification queue consumer.

Trigger: SQS classification queue
Output: SQS partial batch response
"""

from functools import partial
from typing import Any

import structlog

from pipeline.shared.config import get_settings
from pipeline.shared.models import ClassificationMessage, parse_message
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
    message = parse_message(ClassificationMessage, record.get("body", ""))
    machine.classify_document(message)


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    AWS Lambda entry point for the classification queue.

    Returns:
        {"batchItemFailures": [{"itemIdentifier": messageId}, ...]}
    """
    records = event.get("Records", [])
    log.info("lambda_invoked", handler="classification", record_count=len(records))

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

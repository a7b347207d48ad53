"""
TextractCompletion Lambda Handler

Main entry point for processing Textract async job completion notifications.

Trigger: SNS topic subscribed to Textract completion, or an SQS queue
subscribed to that topic
Output: SNS summary response, or SQS partial batch response

Flow:
1. Detect the event shape (SNS records, SQS records, direct payload)
2. Unwrap each Textract notification
3. Complete extraction for the matching job
4. SNS: unknown jobs are logged, other failures re-raised after the batch
   SQS: failed records are reported as batchItemFailures
"""

import json
from functools import partial
from typing import Any

import structlog

from pipeline.shared.config import get_settings
from pipeline.shared.exceptions import JobNotFoundError, ValidationError
from pipeline.shared.models import parse_message, unwrap_notification, CompletionNotification
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


def _is_sqs_event(event: dict[str, Any]) -> bool:
    records = event.get("Records") or []
    return bool(records) and records[0].get("eventSource") == "aws:sqs"


def _handle_sqs_record(machine: DocumentJobStateMachine, record: dict[str, Any]) -> None:
    notification = unwrap_notification(record.get("body", ""))
    machine.complete_extraction(notification)


def _handle_sns_records(records: list[dict[str, Any]]) -> dict[str, Any]:
    """
    Process SNS records one by one.

    Unknown jobs and malformed notifications are logged and skipped; any
    other failure is re-raised once every record has been attempted.
    """
    processed = 0
    skipped = 0
    errors: list[Exception] = []

    for record in records:
        if record.get("EventSource") != "aws:sns":
            log.warning("unexpected_event_source", event_source=record.get("EventSource"))
            skipped += 1
            continue

        try:
            notification = unwrap_notification(record.get("Sns", {}).get("Message", ""))
            _get_machine().complete_extraction(notification)
            processed += 1
        except JobNotFoundError as e:
            log.error("textract_job_unknown", textract_job_id=e.textract_job_id)
            skipped += 1
        except ValidationError as e:
            log.error("notification_invalid", error=str(e))
            skipped += 1
        except Exception as e:
            log.exception("notification_processing_failed", error=str(e))
            errors.append(e)

    if errors:
        raise errors[0]

    return {"processed": processed, "skipped": skipped}


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    AWS Lambda entry point for Textract completion handling.

    Args:
        event: SNS event, SQS event, or a raw {JobId, Status} payload
        context: Lambda execution context

    Returns:
        SQS: {"batchItemFailures": [...]}
        otherwise: {"statusCode": 200, "body": "..."}
    """
    if _is_sqs_event(event):
        records = event["Records"]
        log.info("lambda_invoked", handler="textract_completion", source="sqs", record_count=len(records))
        # Built before the worker threads start so they share one machine.
        machine = _get_machine()
        result = process_batch_records(
            records,
            partial(_handle_sqs_record, machine),
            max_workers=get_settings().batch_max_workers,
        )
        return result.to_response()

    if "Records" in event:
        log.info("lambda_invoked", handler="textract_completion", source="sns", record_count=len(event["Records"]))
        summary = _handle_sns_records(event["Records"])
        return {"statusCode": 200, "body": json.dumps(summary)}

    # Direct invocation with a raw Textract payload
    log.info("lambda_invoked", handler="textract_completion", source="direct")
    try:
        notification = parse_message(CompletionNotification, event)
        job = _get_machine().complete_extraction(notification)
    except ValidationError as e:
        log.warning("invalid_request", error=str(e))
        return {"statusCode": 400, "body": json.dumps({"error": str(e)})}
    except JobNotFoundError as e:
        log.warning("textract_job_unknown", textract_job_id=e.textract_job_id)
        return {"statusCode": 404, "body": json.dumps({"error": str(e)})}

    return {
        "statusCode": 200,
        "body": json.dumps({
            "job_id": job.job_id,
            "document_id": job.document_id,
            "status": job.status.value,
        }),
    }

"""
SQS Batch Processing

Settle-all processing of a Lambda SQS batch: every record runs, and the
reply lists exactly the records that failed so only those are redelivered.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

log = structlog.get_logger()


@dataclass
class BatchResult:
    """Per-batch outcome."""

    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        """Lambda partial batch response."""
        return {
            "batchItemFailures": [{"itemIdentifier": message_id} for message_id in self.failed],
        }


def process_batch_records(
    records: list[dict[str, Any]],
    handle: Callable[[dict[str, Any]], Any],
    *,
    max_workers: int = 10,
) -> BatchResult:
    """
    Run handle(record) for every SQS record concurrently.

    Args:
        records: event["Records"] from an SQS trigger
        handle: Processes one record; raising marks the record failed
        max_workers: Upper bound on concurrent records

    Returns:
        BatchResult with succeeded and failed message ids
    """
    result = BatchResult()
    if not records:
        return result

    workers = max(1, min(max_workers, len(records)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {
            executor.submit(handle, record): record.get("messageId", "")
            for record in records
        }
        for future in as_completed(futures):
            message_id = futures[future]
            try:
                future.result()
            except Exception as e:
                log.error(
                    "record_processing_failed",
                    message_id=message_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                result.failed.append(message_id)
            else:
                result.succeeded.append(message_id)

    log.info(
        "batch_processed",
        record_count=len(records),
        succeeded=len(result.succeeded),
        failed=len(result.failed),
    )
    return result

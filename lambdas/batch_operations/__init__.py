"""
BatchOperations Lambda

Scheduled operational sweeps over the job table.

Trigger: EventBridge Scheduled Rule
Output: {"statusCode", "body"} summary

Operations:
- process_batch: start extraction for SUBMITTED jobs
- retry_failed: reset FAILED jobs to SUBMITTED
- await_extraction: poll the completion queue for one job
"""

from lambdas.batch_operations.handler import lambda_handler

__all__ = ["lambda_handler"]

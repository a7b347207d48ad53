"""
Operational Batch Operations

Scheduled entry points that sweep the job table by status: advance
SUBMITTED jobs and reset FAILED ones for another attempt.
"""

import structlog

from pipeline.shared.exceptions import PipelineError
from pipeline.shared.state_machine import JobStatus
from pipeline.processor.machine import DocumentJobStateMachine
from pipeline.processor.polling import CompletionPoller

log = structlog.get_logger()


class BatchOperations:
    """Status-driven sweeps over the job table; one failing job never stops the sweep."""

    def __init__(
        self,
        machine: DocumentJobStateMachine,
        *,
        poller: CompletionPoller | None = None,
    ) -> None:
        self._machine = machine
        self._poller = poller

    def process_batch(self, batch_size: int = 10) -> list[str]:
        """
        Start extraction for up to batch_size SUBMITTED jobs.

        Returns:
            Document ids whose extraction was started
        """
        jobs = self._machine.jobs.get_jobs_by_status(JobStatus.SUBMITTED, batch_size)
        log.info("process_batch_started", batch_size=batch_size, found=len(jobs))

        processed: list[str] = []
        for job in jobs:
            try:
                self._machine.start_extraction(job)
            except PipelineError as e:
                log.error(
                    "batch_document_failed",
                    job_id=job.job_id,
                    document_id=job.document_id,
                    error=str(e),
                )
                continue
            processed.append(job.document_id)

        log.info("process_batch_completed", processed=len(processed), found=len(jobs))
        return processed

    def retry_failed_documents(self, batch_size: int = 10) -> list[str]:
        """
        Reset up to batch_size FAILED jobs to SUBMITTED.

        Returns:
            Document ids that were reset
        """
        jobs = self._machine.jobs.get_jobs_by_status(JobStatus.FAILED, batch_size)
        log.info("retry_failed_started", batch_size=batch_size, found=len(jobs))

        retried: list[str] = []
        for job in jobs:
            try:
                updated = self._machine.jobs.update_job_status(
                    job.job_id,
                    JobStatus.SUBMITTED,
                    operator_retry=True,
                )
            except PipelineError as e:
                log.error(
                    "retry_document_failed",
                    job_id=job.job_id,
                    document_id=job.document_id,
                    error=str(e),
                )
                continue

            if updated is None:
                log.warning("retry_job_missing", job_id=job.job_id)
                continue
            retried.append(job.document_id)

        log.info("retry_failed_completed", retried=len(retried), found=len(jobs))
        return retried

    def await_extraction(self, job_id: str):
        """Poll for one job's Textract completion and apply it."""
        if self._poller is None:
            raise ValueError("No completion poller configured")
        return self._machine.await_extraction(job_id, self._poller)

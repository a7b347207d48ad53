"""
Textract Tools

Extraction gateway over Amazon Textract. Synchronous analysis for small
documents, asynchronous jobs with SNS completion notification for the
rest, and paginated result retrieval merged into one logical result.
"""

from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError
import structlog

from pipeline.shared.config import Settings
from pipeline.shared.exceptions import TextractError

log = structlog.get_logger()

RESULT_PAGE_SIZE = 1000


class TextractGateway:
    """
    Textract implementation of the ExtractionGateway interface.

    With an empty feature list the text detection APIs are used,
    otherwise the analysis APIs.
    """

    def __init__(
        self,
        client: Any,
        *,
        sns_topic_arn: str | None = None,
        role_arn: str | None = None,
    ) -> None:
        self._client = client
        self._sns_topic_arn = sns_topic_arn
        self._role_arn = role_arn

    @classmethod
    def from_settings(cls, settings: Settings) -> "TextractGateway":
        return cls(
            boto3.client("textract", **settings.textract_config),
            sns_topic_arn=settings.textract_sns_topic_arn,
            role_arn=settings.textract_role_arn,
        )

    @staticmethod
    def _document(bucket: str, key: str) -> dict[str, Any]:
        return {"S3Object": {"Bucket": bucket, "Name": key}}

    @staticmethod
    def _wrap(operation: str, e: Exception, **context: Any) -> TextractError:
        if isinstance(e, ClientError):
            error = e.response.get("Error", {})
            message = error.get("Message") or str(e)
            context["error_code"] = error.get("Code")
        else:
            message = str(e)

        log.error(f"textract_{operation}_failed", error=message, **context)
        return TextractError(
            f"Textract {operation} failed: {message}",
            cause=e,
            **context,
        )

    def analyze_document_sync(
        self,
        bucket: str,
        key: str,
        features: list[str],
    ) -> dict[str, Any]:
        """
        Extract a small document in a single synchronous call.

        Raises:
            TextractError: If the Textract call fails
        """
        log.info("textract_sync_started", bucket=bucket, key=key, features=features)

        try:
            if features:
                response = self._client.analyze_document(
                    Document=self._document(bucket, key),
                    FeatureTypes=list(features),
                )
            else:
                response = self._client.detect_document_text(
                    Document=self._document(bucket, key),
                )
        except (ClientError, BotoCoreError) as e:
            raise self._wrap("analyze", e, bucket=bucket, key=key) from e

        log.info(
            "textract_sync_completed",
            bucket=bucket,
            key=key,
            block_count=len(response.get("Blocks", [])),
        )
        return response

    def start_extraction(
        self,
        bucket: str,
        key: str,
        features: list[str],
        *,
        job_tag: str | None = None,
    ) -> str:
        """
        Start an asynchronous extraction job.

        The SNS notification channel is attached only when both the topic
        and the role are configured.

        Returns:
            Textract JobId

        Raises:
            TextractError: If the job cannot be started
        """
        params: dict[str, Any] = {"DocumentLocation": self._document(bucket, key)}

        if self._sns_topic_arn and self._role_arn:
            params["NotificationChannel"] = {
                "SNSTopicArn": self._sns_topic_arn,
                "RoleArn": self._role_arn,
            }
        else:
            log.warning(
                "textract_notification_channel_missing",
                bucket=bucket,
                key=key,
                has_topic=bool(self._sns_topic_arn),
                has_role=bool(self._role_arn),
            )

        if job_tag:
            params["JobTag"] = job_tag

        try:
            if features:
                params["FeatureTypes"] = list(features)
                response = self._client.start_document_analysis(**params)
            else:
                response = self._client.start_document_text_detection(**params)
        except (ClientError, BotoCoreError) as e:
            raise self._wrap("start", e, bucket=bucket, key=key) from e

        job_id = response.get("JobId")
        if not job_id:
            raise TextractError(
                "Textract start returned no JobId",
                bucket=bucket,
                key=key,
            )

        log.info("textract_job_started", textract_job_id=job_id, bucket=bucket, key=key)
        return job_id

    def fetch_result(self, job_id: str, *, with_features: bool) -> dict[str, Any]:
        """
        Fetch every result page of a finished job.

        Args:
            job_id: Textract JobId
            with_features: Use GetDocumentAnalysis instead of GetDocumentTextDetection

        Returns:
            {"JobStatus", "DocumentMetadata", "Blocks", "Warnings"} with all
            pages concatenated

        Raises:
            TextractError: If any page request fails
        """
        fetch = (
            self._client.get_document_analysis
            if with_features
            else self._client.get_document_text_detection
        )

        result: dict[str, Any] = {"Blocks": [], "Warnings": []}
        next_token = None
        pages = 0

        try:
            while True:
                params: dict[str, Any] = {"JobId": job_id, "MaxResults": RESULT_PAGE_SIZE}
                if next_token:
                    params["NextToken"] = next_token

                response = fetch(**params)
                pages += 1

                result["JobStatus"] = response.get("JobStatus")
                if "DocumentMetadata" in response:
                    result["DocumentMetadata"] = response["DocumentMetadata"]
                result["Blocks"].extend(response.get("Blocks", []))
                result["Warnings"].extend(response.get("Warnings", []))

                log.debug(
                    "textract_page_fetched",
                    textract_job_id=job_id,
                    page=pages,
                    total_blocks=len(result["Blocks"]),
                )

                next_token = response.get("NextToken")
                if not next_token:
                    break
        except (ClientError, BotoCoreError) as e:
            raise self._wrap("fetch", e, textract_job_id=job_id) from e

        log.info(
            "textract_results_fetched",
            textract_job_id=job_id,
            pages=pages,
            block_count=len(result["Blocks"]),
            job_status=result.get("JobStatus"),
        )
        return result

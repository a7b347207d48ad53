"""
SQS Tools

Queue adapter used for the ingest, classification and completion queues.
Delivery is at-least-once; dead-lettering after the max receive count is
done by SQS itself from the redrive policy configured here.
"""

import json
from dataclasses import dataclass, field
from typing import Any

import boto3
from botocore.exceptions import ClientError
import structlog

from pipeline.shared.config import Settings
from pipeline.shared.exceptions import QueueError

log = structlog.get_logger()

SQS_MAX_BATCH = 10


@dataclass(frozen=True)
class ReceivedMessage:
    """A message received from SQS, deleted by receipt handle once handled."""

    message_id: str
    receipt_handle: str
    body: str
    attributes: dict[str, str] = field(default_factory=dict)

    @property
    def receive_count(self) -> int:
        return int(self.attributes.get("ApproximateReceiveCount", "0"))


class SqsQueue:
    """
    SQS implementation of the Queue interface.

    Usage:
        queue = SqsQueue.from_settings(settings, settings.sqs_classification_queue_url)
        queue.send({"documentId": "...", "bucket": "...", "key": "..."})
    """

    def __init__(self, client: Any, queue_url: str) -> None:
        self._client = client
        self.queue_url = queue_url

    @classmethod
    def from_settings(cls, settings: Settings, queue_url: str) -> "SqsQueue":
        return cls(boto3.client("sqs", **settings.sqs_config), queue_url)

    def _error(self, operation: str, e: ClientError) -> QueueError:
        log.error(f"sqs_{operation}_failed", queue_url=self.queue_url, error=str(e))
        return QueueError(
            operation=operation,
            queue_url=self.queue_url,
            error_message=str(e),
        )

    def send(
        self,
        message: dict[str, Any],
        *,
        message_type: str | None = None,
    ) -> str:
        """
        Send a JSON message.

        Args:
            message: JSON-serialisable payload
            message_type: Optional MessageType attribute

        Returns:
            SQS message id

        Raises:
            QueueError: If the send fails
        """
        params: dict[str, Any] = {
            "QueueUrl": self.queue_url,
            "MessageBody": json.dumps(message, default=str),
        }
        if message_type:
            params["MessageAttributes"] = {
                "MessageType": {"DataType": "String", "StringValue": message_type},
            }

        try:
            response = self._client.send_message(**params)
        except ClientError as e:
            raise self._error("send", e) from e

        message_id = response["MessageId"]
        log.info("message_sent", queue_url=self.queue_url, message_id=message_id)
        return message_id

    def receive(
        self,
        max_messages: int = SQS_MAX_BATCH,
        *,
        wait_time_seconds: int = 0,
        visibility_timeout: int | None = None,
    ) -> list[ReceivedMessage]:
        """
        Receive up to max_messages (1-10).

        Raises:
            QueueError: If the receive fails
        """
        params: dict[str, Any] = {
            "QueueUrl": self.queue_url,
            "MaxNumberOfMessages": max(1, min(max_messages, SQS_MAX_BATCH)),
            "WaitTimeSeconds": wait_time_seconds,
            "AttributeNames": ["ApproximateReceiveCount"],
        }
        if visibility_timeout is not None:
            params["VisibilityTimeout"] = visibility_timeout

        try:
            response = self._client.receive_message(**params)
        except ClientError as e:
            raise self._error("receive", e) from e

        messages = [
            ReceivedMessage(
                message_id=m["MessageId"],
                receipt_handle=m["ReceiptHandle"],
                body=m.get("Body", ""),
                attributes=m.get("Attributes", {}),
            )
            for m in response.get("Messages", [])
        ]

        log.debug("messages_received", queue_url=self.queue_url, count=len(messages))
        return messages

    def delete(self, receipt_handle: str) -> None:
        """
        Delete a handled message.

        Raises:
            QueueError: If the delete fails
        """
        try:
            self._client.delete_message(QueueUrl=self.queue_url, ReceiptHandle=receipt_handle)
        except ClientError as e:
            raise self._error("delete", e) from e

    def get_arn(self) -> str:
        """
        Resolve the queue ARN, as needed for redrive policies.

        Raises:
            QueueError: If the attribute lookup fails
        """
        try:
            response = self._client.get_queue_attributes(
                QueueUrl=self.queue_url,
                AttributeNames=["QueueArn"],
            )
        except ClientError as e:
            raise self._error("get_attributes", e) from e
        return response["Attributes"]["QueueArn"]

    def configure_dead_letter(
        self,
        dlq_arn: str,
        max_receive_count: int = 3,
        *,
        visibility_timeout: int | None = None,
    ) -> None:
        """
        Attach a redrive policy so SQS moves messages to the DLQ.

        Raises:
            QueueError: If the attribute update fails
        """
        policy = {"deadLetterTargetArn": dlq_arn, "maxReceiveCount": str(max_receive_count)}
        attributes = {"RedrivePolicy": json.dumps(policy)}
        if visibility_timeout is not None:
            attributes["VisibilityTimeout"] = str(visibility_timeout)

        try:
            self._client.set_queue_attributes(
                QueueUrl=self.queue_url,
                Attributes=attributes,
            )
        except ClientError as e:
            raise self._error("configure", e) from e

        log.info(
            "dead_letter_configured",
            queue_url=self.queue_url,
            dlq_arn=dlq_arn,
            max_receive_count=max_receive_count,
        )

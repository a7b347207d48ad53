# Shared Tools
"""
AWS adapters implementing the capability interfaces.

Each adapter takes an injected boto3 client or resource; from_settings
builds one from Settings for Lambda wiring.
"""

from pipeline.shared.tools.dynamodb import DynamoJobStore
from pipeline.shared.tools.s3 import (
    ResultSink,
    S3DocumentStorage,
    classified_key,
    extracted_key,
    formatted_key,
)
from pipeline.shared.tools.sqs import ReceivedMessage, SqsQueue
from pipeline.shared.tools.textract import TextractGateway

__all__ = [
    # DynamoDB
    "DynamoJobStore",
    # S3
    "S3DocumentStorage",
    "ResultSink",
    "extracted_key",
    "formatted_key",
    "classified_key",
    # SQS
    "SqsQueue",
    "ReceivedMessage",
    # Textract
    "TextractGateway",
]

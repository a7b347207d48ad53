"""
Pytest Configuration and Shared Fixtures

Provides moto AWS mocking, sample Textract output, and test utilities.
"""

import json
import os
from typing import Any
from unittest.mock import MagicMock

import boto3
import pytest
from moto import mock_aws

# Set test environment before importing application modules
os.environ["DOCPIPE_DYNAMODB_TABLE_NAME"] = "TestDocumentJobs"
os.environ["DOCPIPE_S3_BUCKET_NAME"] = "test-documents"
os.environ["DOCPIPE_AWS_REGION"] = "us-east-1"
os.environ["DOCPIPE_SQS_CLASSIFICATION_QUEUE_URL"] = (
    "https://sqs.us-east-1.amazonaws.com/123456789012/test-classification"
)
os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"

TABLE_NAME = "TestDocumentJobs"
BUCKET_NAME = "test-documents"


def _gsi(name: str, hash_key: str, range_key: str | None = None) -> dict[str, Any]:
    key_schema = [{"AttributeName": hash_key, "KeyType": "HASH"}]
    if range_key:
        key_schema.append({"AttributeName": range_key, "KeyType": "RANGE"})
    return {
        "IndexName": name,
        "KeySchema": key_schema,
        "Projection": {"ProjectionType": "ALL"},
        "ProvisionedThroughput": {"ReadCapacityUnits": 5, "WriteCapacityUnits": 5},
    }


def create_jobs_table(dynamodb) -> Any:
    """Create the DocumentJobs table with its three GSIs."""
    table = dynamodb.create_table(
        TableName=TABLE_NAME,
        KeySchema=[
            {"AttributeName": "documentId", "KeyType": "HASH"},
            {"AttributeName": "timestamp", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "documentId", "AttributeType": "S"},
            {"AttributeName": "timestamp", "AttributeType": "S"},
            {"AttributeName": "jobId", "AttributeType": "S"},
            {"AttributeName": "textractJobId", "AttributeType": "S"},
            {"AttributeName": "status", "AttributeType": "S"},
        ],
        GlobalSecondaryIndexes=[
            _gsi("JobIdIndex", "jobId"),
            _gsi("TextractJobIdIndex", "textractJobId"),
            _gsi("StatusIndex", "status", "timestamp"),
        ],
        ProvisionedThroughput={"ReadCapacityUnits": 5, "WriteCapacityUnits": 5},
    )
    table.meta.client.get_waiter("table_exists").wait(TableName=TABLE_NAME)
    return table


# --- AWS Mocking Fixtures ---


@pytest.fixture
def aws_credentials():
    """Mock AWS credentials for moto."""
    return {
        "aws_access_key_id": "testing",
        "aws_secret_access_key": "testing",
        "region_name": "us-east-1",
    }


@pytest.fixture
def settings():
    """Settings loaded from the test environment."""
    from pipeline.shared.config import Settings

    return Settings()


@pytest.fixture
def mock_dynamodb(aws_credentials):
    """Create a mocked DocumentJobs table."""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", **aws_credentials)
        yield create_jobs_table(dynamodb)


@pytest.fixture
def job_store(mock_dynamodb, settings):
    """DynamoJobStore over the mocked table."""
    from pipeline.shared.tools.dynamodb import DynamoJobStore

    return DynamoJobStore(mock_dynamodb, settings)


@pytest.fixture
def mock_s3(aws_credentials):
    """Create a mocked S3 bucket."""
    with mock_aws():
        s3 = boto3.client("s3", **aws_credentials)
        s3.create_bucket(Bucket=BUCKET_NAME)
        yield s3


@pytest.fixture
def mock_sqs(aws_credentials):
    """Create mocked classification, completion and dead-letter queues."""
    with mock_aws():
        sqs = boto3.client("sqs", **aws_credentials)
        urls = {
            name: sqs.create_queue(QueueName=f"test-{name}")["QueueUrl"]
            for name in ("classification", "completion", "dlq")
        }
        yield {"client": sqs, "urls": urls}


@pytest.fixture
def mock_aws_all(aws_credentials):
    """
    Mock all AWS services used by the pipeline.

    Provides DynamoDB, S3 and SQS in one moto context.
    """
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", **aws_credentials)
        table = create_jobs_table(dynamodb)

        s3 = boto3.client("s3", **aws_credentials)
        s3.create_bucket(Bucket=BUCKET_NAME)

        sqs = boto3.client("sqs", **aws_credentials)
        classification_url = sqs.create_queue(QueueName="test-classification")["QueueUrl"]

        yield {
            "table": table,
            "s3": s3,
            "sqs": sqs,
            "classification_url": classification_url,
        }


# --- Textract Fixtures ---


def _box(top: float, left: float) -> dict[str, Any]:
    return {"BoundingBox": {"Top": top, "Left": left, "Width": 0.1, "Height": 0.02}}


@pytest.fixture
def textract_blocks() -> list[dict[str, Any]]:
    """Two-page document with a form field and a 2x2 table."""
    return [
        {"Id": "page-1", "BlockType": "PAGE", "Page": 1},
        {"Id": "line-2", "BlockType": "LINE", "Text": "Account Summary", "Page": 1, "Geometry": _box(0.20, 0.1)},
        {"Id": "line-1", "BlockType": "LINE", "Text": "First National Bank", "Page": 1, "Geometry": _box(0.05, 0.1)},
        {"Id": "line-3", "BlockType": "LINE", "Text": "Closing Balance", "Page": 2, "Geometry": _box(0.10, 0.1)},
        {"Id": "w-name", "BlockType": "WORD", "Text": "Name:", "Geometry": _box(0.30, 0.1)},
        {"Id": "w-jane", "BlockType": "WORD", "Text": "Jane", "Geometry": _box(0.30, 0.3)},
        {"Id": "w-doe", "BlockType": "WORD", "Text": "Doe", "Geometry": _box(0.30, 0.4)},
        {
            "Id": "kv-key",
            "BlockType": "KEY_VALUE_SET",
            "EntityTypes": ["KEY"],
            "Confidence": 95.0,
            "Relationships": [
                {"Type": "CHILD", "Ids": ["w-name"]},
                {"Type": "VALUE", "Ids": ["kv-value"]},
            ],
        },
        {
            "Id": "kv-value",
            "BlockType": "KEY_VALUE_SET",
            "EntityTypes": ["VALUE"],
            "Confidence": 90.0,
            "Relationships": [{"Type": "CHILD", "Ids": ["w-doe", "w-jane"]}],
        },
        {"Id": "w-date", "BlockType": "WORD", "Text": "Date", "Geometry": _box(0.5, 0.1)},
        {"Id": "w-amount", "BlockType": "WORD", "Text": "Amount", "Geometry": _box(0.5, 0.4)},
        {"Id": "w-jan", "BlockType": "WORD", "Text": "2024-01-31", "Geometry": _box(0.55, 0.1)},
        {"Id": "w-100", "BlockType": "WORD", "Text": "100.00", "Geometry": _box(0.55, 0.4)},
        {"Id": "cell-11", "BlockType": "CELL", "RowIndex": 1, "ColumnIndex": 1, "Relationships": [{"Type": "CHILD", "Ids": ["w-date"]}]},
        {"Id": "cell-12", "BlockType": "CELL", "RowIndex": 1, "ColumnIndex": 2, "Relationships": [{"Type": "CHILD", "Ids": ["w-amount"]}]},
        {"Id": "cell-21", "BlockType": "CELL", "RowIndex": 2, "ColumnIndex": 1, "Relationships": [{"Type": "CHILD", "Ids": ["w-jan"]}]},
        {"Id": "cell-22", "BlockType": "CELL", "RowIndex": 2, "ColumnIndex": 2, "Relationships": [{"Type": "CHILD", "Ids": ["w-100"]}]},
        {
            "Id": "table-1",
            "BlockType": "TABLE",
            "Confidence": 88.0,
            "Relationships": [{"Type": "CHILD", "Ids": ["cell-11", "cell-12", "cell-21", "cell-22"]}],
        },
    ]


@pytest.fixture
def textract_result(textract_blocks) -> dict[str, Any]:
    """Merged Textract result as returned by TextractGateway.fetch_result."""
    return {
        "JobStatus": "SUCCEEDED",
        "DocumentMetadata": {"Pages": 2},
        "Blocks": textract_blocks,
        "Warnings": [],
    }


# --- Classification Fixtures ---


@pytest.fixture
def classification_payload() -> dict[str, Any]:
    """Valid classification answer."""
    return {
        "overallConfidence": 0.9,
        "documentType": {
            "type": "BANK_STATEMENT",
            "confidence": 0.92,
            "alternatives": {"TRANSACTION_RECEIPT": 0.05},
        },
        "summary": "Monthly statement for a checking account.",
        "entities": [
            {"type": "Organization", "value": "First National Bank", "confidence": 0.97},
        ],
        "metadata": {"issueDate": "2024-01-31"},
    }


@pytest.fixture
def classification_response(classification_payload) -> str:
    """Model answer wrapping the JSON in prose."""
    return "Here is the classification:\n" + json.dumps(classification_payload) + "\nDone."


@pytest.fixture
def mock_classification_gateway(classification_response):
    """ClassificationGateway double returning a valid answer."""
    gateway = MagicMock()
    gateway.classify.return_value = classification_response
    return gateway


@pytest.fixture
def mock_extraction(textract_result):
    """ExtractionGateway double."""
    extraction = MagicMock()
    extraction.start_extraction.return_value = "ext-123"
    extraction.analyze_document_sync.return_value = textract_result
    extraction.fetch_result.return_value = textract_result
    return extraction


# --- Event Helpers ---


def _sqs_event(*bodies: Any) -> dict[str, Any]:
    """SQS Lambda event with one record per body."""
    return {
        "Records": [
            {
                "messageId": f"msg-{i}",
                "receiptHandle": f"rh-{i}",
                "body": body if isinstance(body, str) else json.dumps(body),
                "eventSource": "aws:sqs",
            }
            for i, body in enumerate(bodies)
        ]
    }


def _sns_event(*messages: dict[str, Any]) -> dict[str, Any]:
    """SNS Lambda event with one record per Textract notification."""
    return {
        "Records": [
            {
                "EventSource": "aws:sns",
                "Sns": {"Message": json.dumps(message)},
            }
            for message in messages
        ]
    }


@pytest.fixture
def sqs_event():
    """Builder for SQS Lambda events."""
    return _sqs_event


@pytest.fixture
def sns_event():
    """Builder for SNS Lambda events."""
    return _sns_event

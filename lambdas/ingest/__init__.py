"""
Ingest Lambda

Consumes the ingest queue: creates a job per uploaded document and starts
Textract extraction.

Trigger: SQS ingest queue (batch of up to 10)
Output: DocumentJobs row, Textract job or inline extraction

Flow:
1. Parse ingest message (or S3 event notification) from each record
2. Validate format and size, create SUBMITTED job
3. Start sync or async extraction
4. Report failed records as batchItemFailures
"""

from lambdas.ingest.handler import lambda_handler

__all__ = ["lambda_handler"]

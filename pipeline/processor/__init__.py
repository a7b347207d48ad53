"""
Document Processor

Orchestration core: the job state machine and the pieces it drives.

This package provides:
- DocumentJobStateMachine for ingest, extraction completion and classification
- DocumentClassifier with the optional knowledge base chain
- Textract block parsing into text, forms and tables
- SQS batch settle-all processing and bounded completion polling
- Scheduled batch operations over the job table
"""

from pipeline.processor.batch import BatchResult, process_batch_records
from pipeline.processor.classifier import DocumentClassifier
from pipeline.processor.machine import (
    ClassificationRecord,
    DocumentJobStateMachine,
    resolve_document_id,
    select_features,
)
from pipeline.processor.operations import BatchOperations
from pipeline.processor.parser import ParsedDocument, parse_textract_blocks
from pipeline.processor.polling import CompletionPoller

__all__ = [
    "DocumentJobStateMachine",
    "ClassificationRecord",
    "resolve_document_id",
    "select_features",
    "DocumentClassifier",
    "ParsedDocument",
    "parse_textract_blocks",
    "BatchResult",
    "process_batch_records",
    "CompletionPoller",
    "BatchOperations",
]

# Shared Infrastructure for the Document Pipeline
"""
Shared infrastructure components for every pipeline stage.

This package provides:
- Job status state machine (JobStatus, valid transitions)
- Pydantic models for job rows and queue messages
- Capability interfaces and their AWS adapters
- Configuration management
- Custom exceptions

The LLM layer lives in pipeline.shared.llm and is imported separately.
"""

from pipeline.shared.state_machine import JobStatus, VALID_TRANSITIONS, validate_transition
from pipeline.shared.exceptions import (
    PipelineError,
    ValidationError,
    InvalidStateTransitionError,
    StorageError,
    DocumentNotFoundError,
    DatabaseError,
    JobAlreadyExistsError,
    StatusConflictError,
    QueueError,
    TextractError,
    JobNotFoundError,
)
from pipeline.shared.config import Settings, get_settings

__all__ = [
    # State machine
    "JobStatus",
    "VALID_TRANSITIONS",
    "validate_transition",
    # Exceptions
    "PipelineError",
    "ValidationError",
    "InvalidStateTransitionError",
    "StorageError",
    "DocumentNotFoundError",
    "DatabaseError",
    "JobAlreadyExistsError",
    "StatusConflictError",
    "QueueError",
    "TextractError",
    "JobNotFoundError",
    # Config
    "Settings",
    "get_settings",
]

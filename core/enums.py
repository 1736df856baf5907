# core/enums.py
"""Shared enumerations used across the application."""
from enum import Enum


class ErrorCode(str, Enum):
    """Error codes carried by RAGError and surfaced to API clients."""
    INVALID_INPUT = "INVALID_INPUT"
    DIMENSION_MISMATCH = "DIMENSION_MISMATCH"
    EMBEDDING_FAILED = "EMBEDDING_FAILED"
    LLM_PROVIDER_FAILED = "LLM_PROVIDER_FAILED"
    EMPTY_RESPONSE = "EMPTY_RESPONSE"
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"
    STALE_REFERENCE = "STALE_REFERENCE"
    NOT_FOUND = "NOT_FOUND"


class ProcessingStatus(str, Enum):
    """Document processing lifecycle."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @staticmethod
    def from_string(status: str) -> 'ProcessingStatus':
        """Convert string to ProcessingStatus enum."""
        try:
            return ProcessingStatus(status)
        except ValueError:
            return ProcessingStatus.FAILED


class RebuildState(str, Enum):
    """States of the index rebuild scheduler."""
    IDLE = "idle"
    PENDING_DEBOUNCE = "pending_debounce"
    RUNNING = "running"


class SplitStrategy(str, Enum):
    """Text splitting strategies."""
    AUTO = "auto"
    PARAGRAPH = "paragraph"
    SENTENCE = "sentence"
    FIXED = "fixed"

# core/exceptions.py
"""Error taxonomy for the retrieval pipeline."""
from typing import Optional

from core.enums import ErrorCode


class RAGError(Exception):
    """Base error carrying a machine-readable code."""

    error_code: ErrorCode = ErrorCode.INVALID_INPUT

    def __init__(self, message: str, error_code: Optional[ErrorCode] = None):
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        super().__init__(message)

    def __str__(self):
        # Format used for logging and API error details
        return f"[{self.error_code.value}] {self.message}"


class InvalidInputError(RAGError):
    """Bad question or chunking parameters. Never retried."""
    error_code = ErrorCode.INVALID_INPUT


class DimensionMismatchError(RAGError):
    """A vector's length does not match the index dimension."""
    error_code = ErrorCode.DIMENSION_MISMATCH

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Vector dimension mismatch: expected {expected}, got {actual}")


class EmbeddingFailedError(RAGError):
    error_code = ErrorCode.EMBEDDING_FAILED


class LLMProviderError(RAGError):
    """A language model provider call failed."""
    error_code = ErrorCode.LLM_PROVIDER_FAILED

    def __init__(self, message: str, provider: Optional[str] = None,
                 error_code: Optional[ErrorCode] = None):
        self.provider = provider
        super().__init__(message, error_code)


class EmptyResponseError(LLMProviderError):
    """The provider answered successfully but with no usable text."""
    error_code = ErrorCode.EMPTY_RESPONSE


class PersistenceError(RAGError):
    """Saving the vector snapshot failed."""
    error_code = ErrorCode.PERSISTENCE_FAILED


class DocumentNotFoundError(RAGError):
    error_code = ErrorCode.NOT_FOUND

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document {document_id} not found")


class ChunkNotFoundError(RAGError):
    error_code = ErrorCode.NOT_FOUND

    def __init__(self, document_id: str, chunk_id: str):
        self.document_id = document_id
        self.chunk_id = chunk_id
        super().__init__(f"Chunk {chunk_id} not found in document {document_id}")

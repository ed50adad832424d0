"""Error taxonomy for knowledge ingestion and retrieval."""


class KnowledgeBaseError(Exception):
    """Base class for all knowledge base errors."""

    code = "KNOWLEDGE_BASE_ERROR"


class InvalidInputError(KnowledgeBaseError, ValueError):
    """Raised when the caller supplied unusable input."""

    code = "INVALID_INPUT"


class MissingParameterError(InvalidInputError):
    """Raised when a required input is absent."""

    code = "MISSING_PARAMETER"

    def __init__(self, *names: str):
        self.names = names
        super().__init__(f"Missing required fields: {', '.join(names)}")


class InvalidParameterError(InvalidInputError):
    """Raised when an input is present but out of range or unknown."""

    code = "INVALID_PARAMETER"


class EmptyContentError(InvalidInputError):
    """Raised when extracted or pasted text is blank after trimming."""

    code = "EMPTY_CONTENT"

    def __init__(self, message: str = "No content extracted from input"):
        super().__init__(message)


class EmbeddingUnavailableError(KnowledgeBaseError):
    """Raised when no embedding client is configured.

    This is a configuration problem; callers should not retry.
    """

    code = "EMBEDDING_UNAVAILABLE"

    def __init__(self, message: str = "Embedding provider not configured"):
        super().__init__(message)


class EmbeddingProviderError(KnowledgeBaseError):
    """Raised when the embedding provider call fails.

    Not retried here; the caller decides whether to retry with backoff.
    """

    code = "EMBEDDING_PROVIDER_ERROR"


class DimensionMismatchError(KnowledgeBaseError):
    """Raised when two embeddings of different lengths are compared."""

    code = "DIMENSION_MISMATCH"

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: query has {expected}, stored entry has {actual}"
        )


class NotFoundError(KnowledgeBaseError, LookupError):
    """Raised when a referenced document or chunk does not exist."""

    code = "NOT_FOUND"

"""
Error taxonomy for the page RAG pipeline

Empty retrieval is deliberately absent: "no relevant context" is a valid
result, not an exception.
"""
from typing import Optional


class PageRAGError(Exception):
    """Base class for pipeline errors"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ConfigurationError(PageRAGError):
    """Missing or invalid configuration, e.g. a provider credential. Never retried."""


class ProviderRequestError(PageRAGError):
    """Non-success HTTP status or transport failure talking to a provider"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, cause)
        self.status_code = status_code


class MalformedResponseError(PageRAGError):
    """Provider answered successfully but the payload has an unexpected shape"""


class EmbeddingProviderError(PageRAGError):
    """Embedding failed after all retries; `cause` holds the last failure"""


class GenerationError(PageRAGError):
    """Answer generation failed; `cause` holds the provider failure"""


class PersistenceError(PageRAGError):
    """Chunk store or session store read/write failure"""

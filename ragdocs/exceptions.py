"""Custom exceptions for ragdocs."""

from typing import Optional


class RagDocsError(Exception):
    """Base exception for all ragdocs errors.

    Carries the context needed to act on the error without re-deriving
    state: the operation that failed, the documentation name and, when the
    failure is tied to a file, its relative path.
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        documentation: Optional[str] = None,
        path: Optional[str] = None,
        original_exception: Exception = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.documentation = documentation
        self.path = path
        self.original_exception = original_exception

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "kind": self.kind,
            "message": self.message,
            "operation": self.operation,
            "documentation": self.documentation,
            "path": self.path,
        }


class AlreadyExists(RagDocsError):
    """Raised when adding a documentation whose name is taken."""

    def __init__(self, name: str):
        super().__init__(
            f"Documentation {name} already exists. "
            f"Use 'rag docs update {name}' to update it.",
            operation="add",
            documentation=name,
        )


class NotFound(RagDocsError):
    """Raised when a documentation name cannot be found."""

    def __init__(self, name: str, operation: Optional[str] = None):
        super().__init__(
            f"Documentation {name} not found. Use 'rag docs add {name}' to create it.",
            operation=operation,
            documentation=name,
        )


class SourceFetchError(RagDocsError):
    """Raised when a repository cannot be checked out.

    ``reason`` is one of ``ref_not_found``, ``network`` or ``path_not_found``.
    """

    REF_NOT_FOUND = "ref_not_found"
    NETWORK = "network"
    PATH_NOT_FOUND = "path_not_found"

    def __init__(self, message: str, reason: str, **kwargs):
        super().__init__(message, **kwargs)
        self.reason = reason

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["reason"] = self.reason
        return data


class EmbeddingBackendError(RagDocsError):
    """Raised when embedding generation fails.

    Transient failures only surface here once retries are exhausted;
    ``retryable`` is False for inputs the backend can never accept.
    """

    def __init__(self, message: str, retryable: bool = True, **kwargs):
        super().__init__(message, **kwargs)
        self.retryable = retryable


class StorageError(RagDocsError):
    """Raised when a database operation or transaction fails."""
    pass


class ConfigurationError(RagDocsError):
    """Raised when configuration loading or validation fails."""
    pass


class MalformedContent(RagDocsError):
    """Unparsable markdown; logged and chunked best-effort, never fatal."""
    pass

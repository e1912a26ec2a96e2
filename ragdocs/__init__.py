"""
ragdocs - Local Documentation Corpus

Keeps a versionable, embedded corpus of library documentation pulled from
git repositories and answers semantic queries against it.
"""

__version__ = "0.1.0"

# Package-level imports
from ragdocs.embedding_client import (
    EmbeddingClient,
    build_embedding_text,
)

from ragdocs.store import CorpusStore
from ragdocs.config import (
    RagDocsConfig,
    ConfigLoader,
    get_default_config,
)
from ragdocs.models import (
    Documentation,
    DocFile,
    Chunk,
    ChunkDraft,
    ChunkMetadata,
    AddOptions,
    UpdateOptions,
    RetrieveOptions,
    FileOutcome,
    SyncReport,
    RetrievalResult,
)
from ragdocs.exceptions import (
    RagDocsError,
    AlreadyExists,
    NotFound,
    SourceFetchError,
    EmbeddingBackendError,
    StorageError,
    ConfigurationError,
    MalformedContent,
)

__all__ = [
    # Embedding Client
    "EmbeddingClient",
    "build_embedding_text",
    # Storage
    "CorpusStore",
    # Configuration
    "RagDocsConfig",
    "ConfigLoader",
    "get_default_config",
    # Models
    "Documentation",
    "DocFile",
    "Chunk",
    "ChunkDraft",
    "ChunkMetadata",
    "AddOptions",
    "UpdateOptions",
    "RetrieveOptions",
    "FileOutcome",
    "SyncReport",
    "RetrievalResult",
    # Exceptions
    "RagDocsError",
    "AlreadyExists",
    "NotFound",
    "SourceFetchError",
    "EmbeddingBackendError",
    "StorageError",
    "ConfigurationError",
    "MalformedContent",
]

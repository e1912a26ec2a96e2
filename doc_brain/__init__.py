"""Documentation sync and retrieval engine."""

from .chunker import Block, MarkdownChunker, parse_blocks
from .fetcher import GitFetcher, iter_markdown_files
from .hasher import hash_bytes, hash_file
from .retriever import RetrievalEngine
from .sync import SyncEngine

__all__ = [
    # Engines
    "SyncEngine",
    "RetrievalEngine",
    # Components
    "MarkdownChunker",
    "GitFetcher",
    "Block",
    "parse_blocks",
    "iter_markdown_files",
    "hash_bytes",
    "hash_file",
]

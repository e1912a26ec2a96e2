"""Shared fixtures for ragdocs tests."""

import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, List, Optional, Type

import pytest

from doc_brain.fetcher import resolve_subdir
from ragdocs.exceptions import EmbeddingBackendError
from ragdocs.store import CorpusStore

ALPHABET = "abcdefghijklmnopqrstuvwxyz"


class FakeEmbedder:
    """Deterministic embedder: letter-frequency vectors, word-count tokens."""

    def __init__(
        self,
        fail_on: Optional[str] = None,
        vectors: Optional[Dict[str, List[float]]] = None,
        error_type: Type[Exception] = EmbeddingBackendError,
    ):
        self.fail_on = fail_on
        self.error_type = error_type
        self.vectors = vectors or {}
        self.calls: List[List[str]] = []

    def count_tokens(self, text: str) -> int:
        return len(text.split())

    def vector_for(self, text: str) -> List[float]:
        if text in self.vectors:
            return self.vectors[text]
        lowered = text.lower()
        return [float(lowered.count(c)) for c in ALPHABET] + [1.0]

    async def embed(self, text: str) -> List[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        for text in texts:
            if self.fail_on and self.fail_on in text:
                raise self.error_type(f"backend refused input containing {self.fail_on!r}")
        return [self.vector_for(t) for t in texts]


class FakeFetcher:
    """Serves a local directory in place of a git checkout."""

    def __init__(self, root: Path, error: Optional[Exception] = None):
        self.root = root
        self.error = error
        self.checkouts = []

    @asynccontextmanager
    async def checkout(self, repo_url: str, branch: str, subdir: Optional[str] = None):
        self.checkouts.append((repo_url, branch, subdir))
        if self.error is not None:
            raise self.error
        yield resolve_subdir(self.root, subdir)


def write_files(root: Path, files: Dict[str, str]):
    """Write a {relative path: text} mapping under root."""
    for path, text in files.items():
        target = root / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text)


@pytest.fixture
async def store():
    """Create temporary corpus store for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = str(Path(tmpdir) / "test.sqlite")
        async with CorpusStore(db_path) as corpus:
            yield corpus


@pytest.fixture
def repo_dir():
    """Temporary directory standing in for a repository checkout."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def embedder():
    return FakeEmbedder()

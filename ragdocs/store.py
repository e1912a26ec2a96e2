"""Corpus storage for documentations, files and chunks using SQLite."""

import asyncio
import json
import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import aiosqlite
import numpy as np

from .exceptions import AlreadyExists, ConfigurationError, NotFound, StorageError
from .models import (
    AddOptions, Chunk, ChunkDraft, ChunkMetadata, DocFile, Documentation, ScoredChunk
)
from .schema import initialize_database

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now().isoformat()


def encode_embedding(embedding: Sequence[float]) -> bytes:
    """Pack a vector as little-endian float32 bytes."""
    return np.asarray(embedding, dtype="<f4").tobytes()


def decode_embedding(blob: bytes) -> np.ndarray:
    """Unpack a vector stored by encode_embedding."""
    return np.frombuffer(blob, dtype="<f4")


def cosine_distances(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Cosine distance (1 - cosine similarity) of each row to the query.

    Zero vectors have no direction and are placed at distance 1.0.
    """
    matrix = matrix.astype(np.float64)
    query = query.astype(np.float64)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    similarity = np.divide(dots, norms, out=np.zeros_like(dots), where=norms != 0)
    return 1.0 - similarity


class CorpusStore:
    """Persists the documentation corpus and answers nearest-neighbour queries.

    The store owns the single aiosqlite connection. Multi-statement writes go
    through :meth:`transaction`, which serializes writers with a lock so that
    concurrent sync workers never interleave their statements.
    """

    def __init__(self, db_path: str, dimension: Optional[int] = None):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
            dimension: Expected embedding dimension; when None the dimension of
                the first stored chunk becomes the reference
        """
        self.db_path = str(db_path)
        self.dimension = dimension
        self.db: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    async def __aenter__(self):
        """Async context manager entry."""
        await self._initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def _initialize(self):
        """Initialize database connection and schema."""
        try:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            self.db = await aiosqlite.connect(self.db_path, isolation_level=None)
            self.db.row_factory = aiosqlite.Row
            await initialize_database(self.db)
            logger.debug(f"Corpus store opened: {self.db_path}")
        except StorageError:
            await self.close()
            raise
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Failed to initialize corpus store: {e}")
            await self.close()
            raise StorageError(
                f"Failed to initialize database {self.db_path}: {e}", original_exception=e
            )

    async def close(self):
        if self.db:
            await self.db.close()
            self.db = None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run a group of statements atomically.

        Commits on success and rolls back on any error, including task
        cancellation, so either every row is visible or none are.
        """
        async with self._write_lock:
            await self.db.execute("BEGIN IMMEDIATE")
            try:
                yield self.db
            except BaseException:
                await self.db.execute("ROLLBACK")
                raise
            else:
                await self.db.execute("COMMIT")

    # Documentation Management

    async def create_documentation(self, options: AddOptions) -> Documentation:
        """Create a documentation row."""
        now = _now()
        try:
            async with self.transaction() as db:
                cursor = await db.execute(
                    """INSERT INTO documentations (
                        name, repo_url, subdir, branch, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?)""",
                    (options.name, options.repo_url, options.subdir, options.branch, now, now)
                )
                doc_id = cursor.lastrowid
        except sqlite3.IntegrityError:
            raise AlreadyExists(options.name)
        except sqlite3.Error as e:
            logger.error(f"Failed to create documentation {options.name}: {e}")
            raise StorageError(
                f"Failed to create documentation {options.name}",
                operation="add", documentation=options.name, original_exception=e
            )

        logger.info(f"Created documentation {options.name} (id={doc_id})")
        return await self.get_documentation(options.name)

    async def get_documentation(self, name: str) -> Optional[Documentation]:
        """Get documentation by name."""
        row = await self._fetchone("SELECT * FROM documentations WHERE name = ?", (name,))
        return Documentation(**dict(row)) if row else None

    async def has_documentation(self, name: str) -> bool:
        row = await self._fetchone("SELECT 1 FROM documentations WHERE name = ?", (name,))
        return row is not None

    async def list_documentations(self) -> List[Documentation]:
        rows = await self._fetchall("SELECT * FROM documentations ORDER BY name")
        return [Documentation(**dict(row)) for row in rows]

    async def update_documentation(self, name: str, changes: Dict[str, Any]) -> Documentation:
        """Merge field changes into a documentation row and bump updated_at."""
        allowed = {"repo_url", "subdir", "branch"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"Cannot update documentation fields: {sorted(unknown)}")

        updates = [f"{field} = ?" for field in changes] + ["updated_at = ?"]
        params = list(changes.values()) + [_now(), name]
        try:
            async with self.transaction() as db:
                cursor = await db.execute(
                    f"UPDATE documentations SET {', '.join(updates)} WHERE name = ?",
                    params
                )
                if cursor.rowcount == 0:
                    raise NotFound(name, operation="update")
        except sqlite3.Error as e:
            logger.error(f"Failed to update documentation {name}: {e}")
            raise StorageError(
                f"Failed to update documentation {name}",
                operation="update", documentation=name, original_exception=e
            )

        logger.info(f"Updated documentation {name}: {changes}")
        return await self.get_documentation(name)

    async def delete_documentation(self, name: str) -> bool:
        """Delete a documentation with all its files and chunks.

        Returns:
            True if a documentation was deleted
        """
        try:
            async with self.transaction() as db:
                cursor = await db.execute("DELETE FROM documentations WHERE name = ?", (name,))
                deleted = cursor.rowcount > 0
        except sqlite3.Error as e:
            logger.error(f"Failed to delete documentation {name}: {e}")
            raise StorageError(
                f"Failed to delete documentation {name}",
                operation="remove", documentation=name, original_exception=e
            )
        if deleted:
            logger.info(f"Deleted documentation {name}")
        return deleted

    # File Management

    async def find_files(self, documentation_id: int) -> List[DocFile]:
        """Get all files of a documentation, ordered by path."""
        rows = await self._fetchall(
            "SELECT * FROM files WHERE documentation_id = ? ORDER BY path",
            (documentation_id,)
        )
        return [DocFile(**dict(row)) for row in rows]

    async def get_file(self, documentation_id: int, path: str) -> Optional[DocFile]:
        row = await self._fetchone(
            "SELECT * FROM files WHERE documentation_id = ? AND path = ?",
            (documentation_id, path)
        )
        return DocFile(**dict(row)) if row else None

    async def delete_file(self, file_id: int) -> None:
        """Delete a file and, by cascade, its chunks."""
        try:
            async with self.transaction() as db:
                await db.execute("DELETE FROM files WHERE id = ?", (file_id,))
        except sqlite3.Error as e:
            logger.error(f"Failed to delete file {file_id}: {e}")
            raise StorageError(f"Failed to delete file {file_id}", original_exception=e)

    async def create_file_with_chunks(
        self,
        documentation_id: int,
        path: str,
        file_hash: str,
        drafts: List[ChunkDraft],
        embeddings: List[List[float]],
        replace_file_id: Optional[int] = None,
    ) -> DocFile:
        """Write a file and all of its chunks in one transaction.

        When ``replace_file_id`` is given the old file (and its chunks) is
        deleted inside the same transaction, so readers see either the old
        chunk set or the new one.
        """
        if len(drafts) != len(embeddings):
            raise StorageError(
                f"Chunk count ({len(drafts)}) != embedding count ({len(embeddings)})",
                path=path
            )
        expected = await self.expected_dimension()
        for embedding in embeddings:
            expected = self._check_dimension(len(embedding), expected, path=path)

        now = _now()
        try:
            async with self.transaction() as db:
                if replace_file_id is not None:
                    await db.execute("DELETE FROM files WHERE id = ?", (replace_file_id,))
                cursor = await db.execute(
                    """INSERT INTO files (
                        documentation_id, path, hash, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?)""",
                    (documentation_id, path, file_hash, now, now)
                )
                file_id = cursor.lastrowid
                await db.executemany(
                    """INSERT INTO chunks (
                        file_id, chunk_index, metadata, content, embedding, dimension,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    [
                        (
                            file_id,
                            index,
                            draft.metadata.model_dump_json(),
                            draft.content,
                            encode_embedding(embedding),
                            len(embedding),
                            now,
                            now,
                        )
                        for index, (draft, embedding) in enumerate(zip(drafts, embeddings))
                    ]
                )
        except sqlite3.Error as e:
            logger.error(f"Failed to write file {path}: {e}")
            raise StorageError(
                f"Failed to write file {path}: {e}", path=path, original_exception=e
            )

        if self.dimension is None and expected is not None:
            self.dimension = expected
        logger.debug(f"Stored {path} with {len(drafts)} chunks")
        return DocFile(
            id=file_id,
            documentation_id=documentation_id,
            path=path,
            hash=file_hash,
            created_at=now,
            updated_at=now,
        )

    # Chunk Queries

    async def get_chunks(self, file_id: int) -> List[Chunk]:
        """Get the chunks of a file in index order."""
        rows = await self._fetchall(
            "SELECT * FROM chunks WHERE file_id = ? ORDER BY chunk_index", (file_id,)
        )
        return [self._row_to_chunk(row) for row in rows]

    async def count_files(self, documentation_id: Optional[int] = None) -> int:
        if documentation_id is None:
            row = await self._fetchone("SELECT COUNT(*) FROM files")
        else:
            row = await self._fetchone(
                "SELECT COUNT(*) FROM files WHERE documentation_id = ?", (documentation_id,)
            )
        return row[0]

    async def count_chunks(self, documentation_id: Optional[int] = None) -> int:
        if documentation_id is None:
            row = await self._fetchone("SELECT COUNT(*) FROM chunks")
        else:
            row = await self._fetchone(
                """SELECT COUNT(*) FROM chunks c JOIN files f ON c.file_id = f.id
                   WHERE f.documentation_id = ?""",
                (documentation_id,)
            )
        return row[0]

    async def nearest_chunks(
        self,
        query_embedding: Sequence[float],
        k: int,
        documentation_id: Optional[int] = None,
    ) -> List[ScoredChunk]:
        """Find the k chunks closest to a query vector.

        Distances are cosine distances, ascending; ties are broken by
        ascending chunk id so results are deterministic.
        """
        if k <= 0:
            return []

        query = np.asarray(query_embedding, dtype=np.float64)
        self._check_dimension(len(query), await self.expected_dimension())

        sql = """SELECT c.id, c.metadata, c.content, c.embedding,
                        f.path, d.name AS documentation
                 FROM chunks c
                 JOIN files f ON c.file_id = f.id
                 JOIN documentations d ON f.documentation_id = d.id"""
        params: tuple = ()
        if documentation_id is not None:
            sql += " WHERE d.id = ?"
            params = (documentation_id,)

        rows = await self._fetchall(sql, params)
        if not rows:
            return []

        ids = np.array([row["id"] for row in rows], dtype=np.int64)
        matrix = np.vstack([decode_embedding(row["embedding"]) for row in rows])
        distances = cosine_distances(matrix, query)
        order = np.lexsort((ids, distances))[:k]

        return [
            ScoredChunk(
                chunk_id=int(ids[i]),
                documentation=rows[i]["documentation"],
                path=rows[i]["path"],
                metadata=ChunkMetadata(**json.loads(rows[i]["metadata"])),
                content=rows[i]["content"],
                distance=float(distances[i]),
            )
            for i in order
        ]

    async def expected_dimension(self) -> Optional[int]:
        """The configured dimension, or the one already present in the corpus."""
        if self.dimension is not None:
            return self.dimension
        row = await self._fetchone("SELECT dimension FROM chunks LIMIT 1")
        return row[0] if row else None

    def _check_dimension(
        self, actual: int, expected: Optional[int], path: Optional[str] = None
    ) -> int:
        if actual == 0:
            raise ConfigurationError("Embedding vector is empty", path=path)
        if expected is not None and actual != expected:
            raise ConfigurationError(
                f"Embedding dimension mismatch: got {actual}, corpus uses {expected}. "
                "Re-create the corpus after changing the embedding model.",
                path=path
            )
        return actual

    def _row_to_chunk(self, row: aiosqlite.Row) -> Chunk:
        data = dict(row)
        data["metadata"] = ChunkMetadata(**json.loads(data["metadata"]))
        data["embedding"] = decode_embedding(data["embedding"]).tolist()
        data.pop("dimension", None)
        return Chunk(**data)

    async def _fetchone(self, sql: str, params: Sequence = ()) -> Optional[aiosqlite.Row]:
        try:
            async with self.db.execute(sql, params) as cursor:
                return await cursor.fetchone()
        except sqlite3.Error as e:
            logger.error(f"Query failed: {e}")
            raise StorageError(f"Query failed: {e}", original_exception=e)

    async def _fetchall(self, sql: str, params: Sequence = ()) -> List[aiosqlite.Row]:
        try:
            async with self.db.execute(sql, params) as cursor:
                return list(await cursor.fetchall())
        except sqlite3.Error as e:
            logger.error(f"Query failed: {e}")
            raise StorageError(f"Query failed: {e}", original_exception=e)

"""Database schema definitions for the documentation corpus."""

import logging

import aiosqlite

from .exceptions import StorageError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

CREATE_TABLES_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Tracked documentation sources
CREATE TABLE IF NOT EXISTS documentations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    repo_url TEXT NOT NULL,
    subdir TEXT,
    branch TEXT NOT NULL,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL
);

-- Markdown files of a documentation
CREATE TABLE IF NOT EXISTS files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    documentation_id INTEGER NOT NULL,
    path TEXT NOT NULL,
    hash TEXT NOT NULL,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL,
    UNIQUE (documentation_id, path),
    FOREIGN KEY (documentation_id) REFERENCES documentations(id) ON DELETE CASCADE
);

-- Embedded chunks of a file
CREATE TABLE IF NOT EXISTS chunks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    file_id INTEGER NOT NULL,
    chunk_index INTEGER NOT NULL CHECK(chunk_index >= 0),
    metadata TEXT NOT NULL,
    content TEXT NOT NULL,
    embedding BLOB NOT NULL,
    dimension INTEGER NOT NULL CHECK(dimension > 0),
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL,
    UNIQUE (file_id, chunk_index),
    FOREIGN KEY (file_id) REFERENCES files(id) ON DELETE CASCADE
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_files_documentation_id ON files(documentation_id);
CREATE INDEX IF NOT EXISTS idx_chunks_file_id ON chunks(file_id);
"""


async def initialize_database(db: aiosqlite.Connection) -> None:
    """Create the corpus tables and record the schema version.

    Foreign keys are enabled per connection so that deleting a
    documentation or file cascades to its rows.

    Raises:
        StorageError: If the database was written by a newer schema
    """
    await db.execute("PRAGMA foreign_keys = ON")
    await db.executescript(CREATE_TABLES_SQL)

    version = await get_schema_version(db)
    if version > SCHEMA_VERSION:
        raise StorageError(
            f"Corpus schema version {version} is newer than supported version {SCHEMA_VERSION}"
        )
    if version < SCHEMA_VERSION:
        await db.execute(
            "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
        )
        logger.info(f"Corpus schema created at version {SCHEMA_VERSION}")


async def get_schema_version(db: aiosqlite.Connection) -> int:
    """Highest schema version recorded, 0 for a new database."""
    async with db.execute("SELECT MAX(version) FROM schema_version") as cursor:
        row = await cursor.fetchone()
    return row[0] or 0

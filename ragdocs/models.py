"""Pydantic models for ragdocs entities and operation results."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Documentation(BaseModel):
    """A tracked documentation source."""
    id: int
    name: str
    repo_url: str
    subdir: Optional[str] = None
    branch: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = self.model_dump()
        data['created_at'] = self.created_at.isoformat()
        data['updated_at'] = self.updated_at.isoformat()
        return data


class DocFile(BaseModel):
    """A markdown file belonging to one documentation."""
    id: int
    documentation_id: int
    path: str
    hash: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChunkMetadata(BaseModel):
    """Context attached to every chunk and embedded alongside it."""
    documentation: str
    path: str
    breadcrumb: List[str] = Field(default_factory=list)
    index: int = 0
    count: int = 0
    oversized: bool = False

    model_config = ConfigDict(from_attributes=True)


class ChunkDraft(BaseModel):
    """A chunk produced by the chunker, not yet embedded or stored."""
    content: str
    metadata: ChunkMetadata
    token_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class Chunk(BaseModel):
    """A stored chunk with its embedding."""
    id: int
    file_id: int
    chunk_index: int
    metadata: ChunkMetadata
    content: str
    embedding: List[float]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ScoredChunk(BaseModel):
    """A chunk returned by a nearest-neighbour query."""
    chunk_id: int
    documentation: str
    path: str
    metadata: ChunkMetadata
    content: str
    distance: float

    model_config = ConfigDict(from_attributes=True)


class AddOptions(BaseModel):
    """Options for adding a documentation."""
    name: str
    repo_url: str
    subdir: Optional[str] = None
    branch: str = "main"

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @field_validator('name', 'repo_url', 'branch')
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Value must not be empty")
        return v

    @field_validator('subdir')
    @classmethod
    def clean_subdir(cls, v: Optional[str]) -> Optional[str]:
        return normalize_subdir(v)


class UpdateOptions(BaseModel):
    """Optional field overrides applied by an update."""
    repo_url: Optional[str] = None
    subdir: Optional[str] = None
    branch: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @field_validator('repo_url', 'branch')
    @classmethod
    def validate_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Value must not be empty")
        return v.strip() if v is not None else v

    @field_validator('subdir')
    @classmethod
    def clean_subdir(cls, v: Optional[str]) -> Optional[str]:
        return normalize_subdir(v)

    def changes(self) -> Dict[str, Any]:
        """Return only the fields that were provided."""
        return self.model_dump(exclude_unset=True)


class RetrieveOptions(BaseModel):
    """Options for a retrieval query."""
    prompt: str
    count: int = 5
    documentation: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @field_validator('prompt')
    @classmethod
    def validate_prompt(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("prompt must not be empty")
        return v

    @field_validator('count')
    @classmethod
    def validate_count(cls, v: int) -> int:
        if v < 0:
            raise ValueError("count must not be negative")
        return v


class FileOutcome(BaseModel):
    """What happened to one file during a sync."""
    path: str
    status: str
    chunks: int = 0
    error: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator('status')
    @classmethod
    def validate_status(cls, v: str) -> str:
        allowed = {'added', 'updated', 'skipped', 'deleted', 'failed'}
        if v not in allowed:
            raise ValueError(f"Status must be one of {allowed}")
        return v


class SyncReport(BaseModel):
    """Per-file result of an add or update."""
    operation: str
    documentation: str
    outcomes: List[FileOutcome] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

    def _with_status(self, status: str) -> List[FileOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def added(self) -> List[FileOutcome]:
        return self._with_status('added')

    @property
    def updated(self) -> List[FileOutcome]:
        return self._with_status('updated')

    @property
    def skipped(self) -> List[FileOutcome]:
        return self._with_status('skipped')

    @property
    def deleted(self) -> List[FileOutcome]:
        return self._with_status('deleted')

    @property
    def failed(self) -> List[FileOutcome]:
        return self._with_status('failed')

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "operation": self.operation,
            "documentation": self.documentation,
            "ok": self.ok,
            "files": [o.model_dump() for o in self.outcomes],
        }


class RetrievalResult(BaseModel):
    """One ranked retrieval hit."""
    chunk_id: int
    documentation: str
    path: str
    metadata: ChunkMetadata
    content: str
    distance: float

    model_config = ConfigDict(from_attributes=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "chunk_id": self.chunk_id,
            "documentation": self.documentation,
            "path": self.path,
            "metadata": self.metadata.model_dump(),
            "content": self.content,
            "distance": self.distance,
        }


def normalize_subdir(subdir: Optional[str]) -> Optional[str]:
    """Strip slashes and whitespace; an empty subdir means the whole repo."""
    if subdir is None:
        return None
    subdir = subdir.strip().strip("/")
    if subdir in ("", "."):
        return None
    return subdir

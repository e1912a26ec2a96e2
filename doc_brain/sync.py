"""Add, update and remove documentations, keeping the corpus in step with git."""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from ragdocs.config import RagDocsConfig
from ragdocs.embedding_client import EmbeddingClient, build_embedding_text
from ragdocs.exceptions import (
    AlreadyExists, ConfigurationError, NotFound, RagDocsError, SourceFetchError, StorageError
)
from ragdocs.models import (
    AddOptions, ChunkDraft, DocFile, Documentation, FileOutcome, SyncReport, UpdateOptions
)
from ragdocs.store import CorpusStore

from .chunker import MarkdownChunker
from .fetcher import GitFetcher, iter_markdown_files
from .hasher import hash_bytes

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[FileOutcome], None]


class SyncEngine:
    """Keeps documentations in the corpus consistent with their repositories.

    Files are processed in parallel by a bounded pool of asyncio workers;
    each file's chunks are produced in order by a single worker and written
    together with the file row in one transaction.
    """

    def __init__(
        self,
        config: RagDocsConfig,
        store: CorpusStore,
        embedder: EmbeddingClient,
        fetcher: Optional[GitFetcher] = None,
        chunker: Optional[MarkdownChunker] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        """Initialize the sync engine.

        Args:
            config: Process configuration
            store: Open corpus store
            embedder: Open embedding client
            fetcher: Repository fetcher (defaults to GitFetcher)
            chunker: Markdown chunker (defaults to one bound to the embedder's tokenizer)
            progress_callback: Called with each file outcome as it completes
        """
        self.config = config
        self.store = store
        self.embedder = embedder
        self.fetcher = fetcher or GitFetcher(config.git)
        self.chunker = chunker or MarkdownChunker(
            embedder.count_tokens, config.chunking.max_tokens
        )
        self.workers = config.sync.workers
        self.progress_callback = progress_callback

    async def add(self, options: AddOptions) -> SyncReport:
        """Create a documentation and index every markdown file of its repository.

        Any file failure aborts the whole operation and removes the partially
        created documentation.

        Raises:
            AlreadyExists: If the name is taken
            SourceFetchError: If the repository cannot be checked out
            RagDocsError: The first file-level failure, with its path
        """
        name = options.name
        if await self.store.has_documentation(name):
            raise AlreadyExists(name)

        logger.info(f"Adding documentation {name} from {options.repo_url}@{options.branch}")
        try:
            async with self.fetcher.checkout(options.repo_url, options.branch, options.subdir) as root:
                paths = list(iter_markdown_files(root))
                documentation = await self.store.create_documentation(options)
                try:
                    outcomes = await self._run_pool(
                        paths,
                        lambda path: self._reconcile_file(documentation, root, path, None),
                        fail_fast=True,
                    )
                except BaseException as e:
                    logger.error(f"Add of {name} failed, rolling back: {e}")
                    await self.store.delete_documentation(name)
                    raise
        except RagDocsError as e:
            e.operation = "add"
            e.documentation = name
            raise

        report = SyncReport(operation="add", documentation=name, outcomes=outcomes)
        logger.info(f"Added documentation {name}: {len(report.added)} files")
        return report

    async def update(self, name: str, options: Optional[UpdateOptions] = None) -> SyncReport:
        """Re-sync a documentation with its (possibly changed) repository.

        Unchanged files are skipped by hash, changed files are re-chunked and
        re-embedded, new files are added and files gone upstream are deleted.
        File-level failures are collected in the report; failed files keep
        their previous rows.

        Raises:
            NotFound: If the documentation does not exist
            SourceFetchError: If the repository cannot be checked out
            ConfigurationError: If embeddings do not match the corpus dimension
        """
        documentation = await self.store.get_documentation(name)
        if documentation is None:
            raise NotFound(name, operation="update")

        changes = options.changes() if options else {}
        target = documentation.model_copy(update=changes)

        logger.info(f"Updating documentation {name} from {target.repo_url}@{target.branch}")
        try:
            async with self.fetcher.checkout(target.repo_url, target.branch, target.subdir) as root:
                paths = list(iter_markdown_files(root))
                if changes:
                    documentation = await self.store.update_documentation(name, changes)
                existing: Dict[str, DocFile] = {
                    f.path: f for f in await self.store.find_files(documentation.id)
                }
                outcomes = await self._run_pool(
                    paths,
                    lambda path: self._reconcile_file(documentation, root, path, existing.get(path)),
                    fail_fast=False,
                )
        except RagDocsError as e:
            e.operation = "update"
            e.documentation = name
            raise

        seen = set(paths)
        for path, stale in existing.items():
            if path in seen:
                continue
            outcome = await self._delete_stale(stale)
            outcomes.append(outcome)
            self._notify(outcome)

        report = SyncReport(operation="update", documentation=name, outcomes=outcomes)
        log = logger.info if report.ok else logger.error
        log(
            f"Updated documentation {name}: {len(report.added)} added, "
            f"{len(report.updated)} updated, {len(report.skipped)} unchanged, "
            f"{len(report.deleted)} deleted, {len(report.failed)} failed"
        )
        return report

    async def remove(self, name: str) -> bool:
        """Delete a documentation with all its files and chunks.

        Returns:
            False if there was nothing to remove
        """
        removed = await self.store.delete_documentation(name)
        if not removed:
            logger.info(f"Documentation {name} not found, nothing to remove")
        return removed

    async def _run_pool(
        self,
        paths: List[str],
        worker: Callable[[str], Awaitable[FileOutcome]],
        fail_fast: bool,
    ) -> List[FileOutcome]:
        """Run ``worker`` over every path with at most ``workers`` in flight.

        With ``fail_fast`` the first failure cancels the remaining files and
        is raised. Otherwise failures become ``failed`` outcomes, except
        configuration errors, which always abort. Unexpected exceptions are
        wrapped in a RagDocsError carrying the path. Outcomes keep path order.
        """
        semaphore = asyncio.Semaphore(self.workers)

        async def run(path: str) -> FileOutcome:
            async with semaphore:
                try:
                    outcome = await worker(path)
                except ConfigurationError:
                    raise
                except RagDocsError as e:
                    e.path = e.path or path
                    if fail_fast:
                        raise
                    logger.error(f"Failed to sync {path}: {e}")
                    outcome = FileOutcome(path=path, status="failed", error=str(e))
                except Exception as e:
                    error = RagDocsError(str(e) or repr(e), path=path, original_exception=e)
                    if fail_fast:
                        raise error from e
                    logger.error(f"Failed to sync {path}: {e!r}")
                    outcome = FileOutcome(path=path, status="failed", error=error.message)
                self._notify(outcome)
                return outcome

        tasks = [asyncio.ensure_future(run(path)) for path in paths]
        if not tasks:
            return []
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        for task in tasks:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()
        return [task.result() for task in tasks]

    async def _reconcile_file(
        self,
        documentation: Documentation,
        root: Path,
        path: str,
        existing: Optional[DocFile],
    ) -> FileOutcome:
        """Bring one file's rows in line with its content on disk."""
        data = await self._read(root, path)
        file_hash = hash_bytes(data)

        if existing is not None and existing.hash == file_hash:
            logger.debug(f"Skipping unchanged file: {path}")
            return FileOutcome(path=path, status="skipped")

        drafts, embeddings = await self._chunk_and_embed(documentation, path, data)
        await self.store.create_file_with_chunks(
            documentation.id,
            path,
            file_hash,
            drafts,
            embeddings,
            replace_file_id=existing.id if existing else None,
        )
        status = "updated" if existing else "added"
        logger.debug(f"{status.capitalize()} {path} ({len(drafts)} chunks)")
        return FileOutcome(path=path, status=status, chunks=len(drafts))

    async def _chunk_and_embed(
        self, documentation: Documentation, path: str, data: bytes
    ) -> Tuple[List[ChunkDraft], List[List[float]]]:
        text = data.decode("utf-8", errors="replace")
        drafts = await asyncio.to_thread(self.chunker.chunk, text, documentation.name, path)
        if not drafts:
            return [], []
        texts = [build_embedding_text(d.metadata, d.content) for d in drafts]
        embeddings = await self.embedder.embed_batch(texts)
        return drafts, embeddings

    async def _read(self, root: Path, path: str) -> bytes:
        try:
            return await asyncio.to_thread((root / path).read_bytes)
        except OSError as e:
            raise SourceFetchError(
                f"Cannot read {path}: {e}",
                reason=SourceFetchError.PATH_NOT_FOUND,
                path=path,
                original_exception=e,
            ) from e

    async def _delete_stale(self, stale: DocFile) -> FileOutcome:
        try:
            await self.store.delete_file(stale.id)
        except StorageError as e:
            logger.error(f"Failed to delete {stale.path}: {e}")
            return FileOutcome(path=stale.path, status="failed", error=str(e))
        logger.debug(f"Deleted {stale.path}, no longer in repository")
        return FileOutcome(path=stale.path, status="deleted")

    def _notify(self, outcome: FileOutcome):
        if self.progress_callback:
            self.progress_callback(outcome)

"""Git checkout of documentation sources and markdown file discovery."""

import asyncio
import logging
import os
import shutil
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Iterator, Optional, Union

import git
from git.exc import GitCommandError, GitCommandNotFound

from ragdocs.config import GitConfig
from ragdocs.exceptions import SourceFetchError

logger = logging.getLogger(__name__)

MARKDOWN_EXTENSIONS = {".md", ".markdown", ".mdx"}

EXCLUDE_DIRS = {
    ".git", "node_modules", "venv", ".venv", "__pycache__", "site-packages",
}

REF_NOT_FOUND_MARKERS = (
    "remote branch",
    "couldn't find remote ref",
    "not found in upstream",
    "invalid refspec",
)


def iter_markdown_files(root: Union[str, Path]) -> Iterator[str]:
    """Yield relative POSIX paths of markdown files under ``root``.

    Paths come out in lexicographic order of their components. Hidden and
    vendored directories are skipped and directory symlinks are not
    followed. Each call returns a fresh generator, so the walk can be
    repeated.

    Raises:
        SourceFetchError: If a directory cannot be listed
    """
    root = Path(root)
    yield from _walk(root, root)


def _walk(directory: Path, root: Path) -> Iterator[str]:
    try:
        entries = sorted(os.scandir(directory), key=lambda entry: entry.name)
    except OSError as e:
        raise SourceFetchError(
            f"Cannot list {directory}: {e.strerror}",
            reason=SourceFetchError.PATH_NOT_FOUND,
            original_exception=e,
        ) from e

    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            if entry.name in EXCLUDE_DIRS or entry.name.startswith("."):
                continue
            yield from _walk(Path(entry.path), root)
        elif entry.is_file() and Path(entry.name).suffix.lower() in MARKDOWN_EXTENSIONS:
            yield Path(entry.path).relative_to(root).as_posix()


def classify_git_error(error: GitCommandError) -> str:
    """Map a failed git command to a SourceFetchError reason."""
    stderr = str(error.stderr or "").lower()
    if any(marker in stderr for marker in REF_NOT_FOUND_MARKERS):
        return SourceFetchError.REF_NOT_FOUND
    return SourceFetchError.NETWORK


def resolve_subdir(checkout_root: Path, subdir: Optional[str]) -> Path:
    """Return the directory to index inside a checkout.

    Raises:
        SourceFetchError: If the subdir is missing or escapes the checkout
    """
    if not subdir:
        return checkout_root
    root = checkout_root.resolve()
    target = (root / subdir).resolve()
    if target != root and root not in target.parents:
        raise SourceFetchError(
            f"Subdirectory {subdir!r} points outside the repository",
            reason=SourceFetchError.PATH_NOT_FOUND,
            path=subdir,
        )
    if not target.is_dir():
        raise SourceFetchError(
            f"Subdirectory {subdir!r} not found in repository",
            reason=SourceFetchError.PATH_NOT_FOUND,
            path=subdir,
        )
    return target


class GitFetcher:
    """Checks out documentation repositories into temporary directories."""

    def __init__(self, config: GitConfig):
        """Initialize the fetcher.

        Args:
            config: Git checkout settings (timeout, depth, retries)
        """
        self.config = config

    @asynccontextmanager
    async def checkout(
        self, repo_url: str, branch: str, subdir: Optional[str] = None
    ) -> AsyncIterator[Path]:
        """Clone ``branch`` of ``repo_url`` and yield the directory to index.

        The clone lives in a temporary directory removed when the context
        exits.

        Raises:
            SourceFetchError: ref_not_found, network or path_not_found
        """
        with tempfile.TemporaryDirectory(prefix="ragdocs-", ignore_cleanup_errors=True) as tmpdir:
            destination = Path(tmpdir) / "checkout"
            await self._clone_with_retry(repo_url, branch, destination)
            yield resolve_subdir(destination, subdir)

    async def _clone_with_retry(self, repo_url: str, branch: str, destination: Path):
        """Clone with exponential backoff on network failures"""
        max_retries = self.config.max_retries

        for attempt in range(max_retries):
            try:
                await asyncio.to_thread(self._clone, repo_url, branch, destination)
                logger.info(f"Checked out {repo_url}@{branch}")
                return

            except GitCommandNotFound as e:
                raise SourceFetchError(
                    "git executable not found", reason=SourceFetchError.NETWORK,
                    original_exception=e,
                ) from e

            except GitCommandError as e:
                reason = classify_git_error(e)
                if reason == SourceFetchError.REF_NOT_FOUND:
                    raise SourceFetchError(
                        f"Branch {branch!r} not found in {repo_url}",
                        reason=reason, original_exception=e,
                    ) from e
                if attempt < max_retries - 1:
                    delay = self.config.retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Clone of {repo_url} failed on attempt {attempt + 1}/{max_retries}, "
                        f"retrying in {delay:.2f}s: {str(e.stderr or e).strip()}"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise SourceFetchError(
                    f"Failed to clone {repo_url} after {max_retries} attempts: "
                    f"{str(e.stderr or e).strip()}",
                    reason=reason, original_exception=e,
                ) from e

    def _clone(self, repo_url: str, branch: str, destination: Path):
        if destination.exists():
            # leftovers of a failed attempt
            shutil.rmtree(destination, ignore_errors=True)
        git.Git().clone(
            repo_url,
            str(destination),
            branch=branch,
            depth=self.config.depth,
            single_branch=True,
            kill_after_timeout=self.config.timeout,
            env={"GIT_TERMINAL_PROMPT": "0"},
        )

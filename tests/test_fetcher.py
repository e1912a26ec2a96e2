"""Unit tests for repository checkout and markdown discovery."""

import pytest
from pathlib import Path
from unittest.mock import MagicMock, patch

from git.exc import GitCommandError

from conftest import write_files
from doc_brain.fetcher import GitFetcher, classify_git_error, iter_markdown_files, resolve_subdir
from ragdocs.config import GitConfig
from ragdocs.exceptions import SourceFetchError


def test_iter_markdown_files(repo_dir):
    """Test discovery is recursive, filtered and sorted."""
    write_files(repo_dir, {
        "b.md": "b",
        "a.md": "a",
        "notes.txt": "not markdown",
        "guide/intro.markdown": "intro",
        "guide/API.MD": "api",
        "guide/page.mdx": "mdx",
        "api/index.md": "index",
        ".github/hidden.md": "hidden",
        "node_modules/pkg/readme.md": "vendored",
    })

    paths = list(iter_markdown_files(repo_dir))

    assert paths == [
        "a.md",
        "api/index.md",
        "b.md",
        "guide/API.MD",
        "guide/intro.markdown",
        "guide/page.mdx",
    ]
    assert list(iter_markdown_files(repo_dir)) == paths


def test_iter_markdown_files_empty(repo_dir):
    """Test an empty tree yields nothing."""
    assert list(iter_markdown_files(repo_dir)) == []


def test_resolve_subdir(repo_dir):
    """Test subdir resolution inside a checkout."""
    (repo_dir / "docs" / "src").mkdir(parents=True)

    assert resolve_subdir(repo_dir, None) == repo_dir
    assert resolve_subdir(repo_dir, "docs/src") == (repo_dir / "docs" / "src").resolve()

    with pytest.raises(SourceFetchError) as exc_info:
        resolve_subdir(repo_dir, "missing")
    assert exc_info.value.reason == SourceFetchError.PATH_NOT_FOUND

    with pytest.raises(SourceFetchError) as exc_info:
        resolve_subdir(repo_dir, "../outside")
    assert exc_info.value.reason == SourceFetchError.PATH_NOT_FOUND


def test_classify_git_error():
    """Test git failures map to fetch reasons."""
    missing_branch = GitCommandError(
        ["git", "clone"], 128, stderr="warning: Could not find remote branch nope to clone."
    )
    offline = GitCommandError(
        ["git", "clone"], 128, stderr="fatal: unable to access: Could not resolve host: example.com"
    )

    assert classify_git_error(missing_branch) == SourceFetchError.REF_NOT_FOUND
    assert classify_git_error(offline) == SourceFetchError.NETWORK


def fake_clone(files):
    def clone(repo_url, destination, **kwargs):
        write_files(Path(destination), files)
    return clone


@pytest.mark.asyncio
async def test_checkout_yields_subdir_and_cleans_up():
    """Test a checkout is served from a temporary directory."""
    fetcher = GitFetcher(GitConfig())

    with patch("doc_brain.fetcher.git.Git") as mock_git:
        mock_git.return_value.clone = MagicMock(
            side_effect=fake_clone({"docs/index.md": "# Index", "README.md": "# Readme"})
        )

        async with fetcher.checkout("https://example.com/repo.git", "main", "docs") as root:
            assert list(iter_markdown_files(root)) == ["index.md"]
            checkout_root = root.parent

        kwargs = mock_git.return_value.clone.call_args.kwargs
        assert kwargs["branch"] == "main"
        assert kwargs["depth"] == 1
        assert kwargs["single_branch"] is True

    assert not checkout_root.exists()


@pytest.mark.asyncio
async def test_checkout_missing_branch_not_retried():
    """Test a missing ref fails without retrying."""
    fetcher = GitFetcher(GitConfig(retry_delay=0.001))
    error = GitCommandError(["git", "clone"], 128, stderr="fatal: Remote branch nope not found in upstream origin")

    with patch("doc_brain.fetcher.git.Git") as mock_git:
        mock_git.return_value.clone = MagicMock(side_effect=error)

        with pytest.raises(SourceFetchError) as exc_info:
            async with fetcher.checkout("https://example.com/repo.git", "nope"):
                pass

        assert exc_info.value.reason == SourceFetchError.REF_NOT_FOUND
        assert mock_git.return_value.clone.call_count == 1


@pytest.mark.asyncio
async def test_checkout_network_error_retried():
    """Test network failures are retried then reported."""
    fetcher = GitFetcher(GitConfig(retry_delay=0.001, max_retries=2))
    error = GitCommandError(["git", "clone"], 128, stderr="fatal: Could not resolve host: example.com")

    with patch("doc_brain.fetcher.git.Git") as mock_git:
        mock_git.return_value.clone = MagicMock(side_effect=error)

        with pytest.raises(SourceFetchError) as exc_info:
            async with fetcher.checkout("https://example.com/repo.git", "main"):
                pass

        assert exc_info.value.reason == SourceFetchError.NETWORK
        assert mock_git.return_value.clone.call_count == 2


@pytest.mark.asyncio
async def test_checkout_missing_subdir():
    """Test a subdir absent from the repository is reported."""
    fetcher = GitFetcher(GitConfig())

    with patch("doc_brain.fetcher.git.Git") as mock_git:
        mock_git.return_value.clone = MagicMock(side_effect=fake_clone({"README.md": "x"}))

        with pytest.raises(SourceFetchError) as exc_info:
            async with fetcher.checkout("https://example.com/repo.git", "main", "docs"):
                pass

        assert exc_info.value.reason == SourceFetchError.PATH_NOT_FOUND


def test_iter_markdown_files_unlistable(repo_dir):
    """Test a directory that cannot be listed aborts the walk."""
    write_files(repo_dir, {"a.md": "a"})

    with patch("doc_brain.fetcher.os.scandir", side_effect=PermissionError(13, "Permission denied")):
        with pytest.raises(SourceFetchError) as exc_info:
            list(iter_markdown_files(repo_dir))

    assert exc_info.value.reason == SourceFetchError.PATH_NOT_FOUND

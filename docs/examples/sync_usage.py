"""
Example usage of the sync engine.

This script demonstrates how to:
1. Load configuration
2. Add a documentation from a git repository
3. Re-sync it after upstream changes
4. Remove it again
"""

import asyncio

from doc_brain import SyncEngine
from ragdocs import ConfigLoader, CorpusStore, EmbeddingClient, RagDocsError
from ragdocs.models import AddOptions, UpdateOptions


def show_progress(outcome):
    print(f"  - {outcome.status:<8} {outcome.path}")


async def main():
    """Demonstrate documentation sync."""

    # Load configuration (writes ~/.rag/config.yaml on first run)
    config = ConfigLoader.initialize()

    print("=" * 60)
    print("Sync Engine Demo")
    print("=" * 60)

    async with CorpusStore(str(config.database_path), config.embedding.dimension) as store:
        async with EmbeddingClient(config.embedding) as embedder:
            engine = SyncEngine(config, store, embedder, progress_callback=show_progress)

            # Example 1: Add a documentation
            print("\n[1] Adding documentation 'fastapi'...")
            options = AddOptions(
                name="fastapi",
                repo_url="https://github.com/fastapi/fastapi",
                subdir="docs/en/docs/tutorial",
                branch="master",
            )
            try:
                report = await engine.add(options)
                print(f"\n✓ Added {len(report.added)} files")
            except RagDocsError as e:
                print(f"\n✗ Add failed: {e}")
                print(f"  Details: {e.to_dict()}")

            # Example 2: Re-sync; unchanged files are skipped by hash
            print("\n[2] Updating documentation 'fastapi'...")
            report = await engine.update("fastapi")
            print(f"\n✓ {len(report.updated)} updated, {len(report.skipped)} unchanged, "
                  f"{len(report.deleted)} deleted, {len(report.failed)} failed")

            # Example 3: Point it at a different subdirectory
            print("\n[3] Switching to the advanced guide...")
            report = await engine.update(
                "fastapi", UpdateOptions(subdir="docs/en/docs/advanced")
            )
            print(f"\n✓ {len(report.added)} added, {len(report.deleted)} deleted")

            # Example 4: Remove
            print("\n[4] Removing documentation 'fastapi'...")
            removed = await engine.remove("fastapi")
            print(f"\n✓ Removed: {removed}")


if __name__ == "__main__":
    asyncio.run(main())

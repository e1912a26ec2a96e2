"""
Example usage of semantic retrieval.

Assumes a documentation was added first, for example:

    rag docs add fastapi https://github.com/fastapi/fastapi --subdir docs/en/docs --branch master
"""

import asyncio
import json

from doc_brain import RetrievalEngine
from ragdocs import ConfigLoader, CorpusStore, EmbeddingClient


async def main():
    """Demonstrate retrieval."""
    config = ConfigLoader.initialize()

    async with CorpusStore(str(config.database_path), config.embedding.dimension) as store:
        async with EmbeddingClient(config.embedding) as embedder:
            engine = RetrievalEngine(store, embedder)

            # Search the whole corpus
            results = await engine.retrieve("How do I declare a path parameter?", 3)
            for i, result in enumerate(results):
                print(f"\nResult {i+1} (distance {result.distance:.4f}):")
                print(f"  - Documentation: {result.documentation}")
                print(f"  - File: {result.path}")
                print(f"  - Section: {' > '.join(result.metadata.breadcrumb) or '-'}")
                print(f"  - Preview: {result.content[:100]}...")

            # Restrict to one documentation and dump JSON, as `rag get --json` does
            results = await engine.retrieve("dependency injection", 2, documentation="fastapi")
            print(json.dumps([r.to_dict() for r in results], indent=2))


if __name__ == "__main__":
    asyncio.run(main())

"""Unit tests for markdown chunking."""

import pytest

from doc_brain.chunker import MarkdownChunker, parse_blocks
from ragdocs.exceptions import MalformedContent


def word_count(text: str) -> int:
    return len(text.split())


def squash(text: str) -> str:
    return "".join(text.split())


@pytest.fixture
def chunker():
    return MarkdownChunker(word_count, max_tokens=20)


def test_empty_document(chunker):
    """Test empty and whitespace-only documents produce no chunks."""
    assert chunker.chunk("", "demo", "empty.md") == []
    assert chunker.chunk("  \n\n\t\n", "demo", "blank.md") == []


def test_small_document_single_chunk(chunker):
    """Test a short document becomes one chunk with its heading."""
    drafts = chunker.chunk("# Title\n\nHello world.\n", "demo", "a.md")

    assert len(drafts) == 1
    draft = drafts[0]
    assert draft.content == "# Title\n\nHello world."
    assert draft.metadata.documentation == "demo"
    assert draft.metadata.path == "a.md"
    assert draft.metadata.breadcrumb == ["Title"]
    assert draft.metadata.index == 0
    assert draft.metadata.count == 1
    assert draft.metadata.oversized is False
    assert draft.token_count == 4


def test_headings_start_chunks_with_breadcrumbs(chunker):
    """Test every heading opens a chunk and breadcrumbs follow nesting."""
    text = "# A\n\nintro\n\n## B\n\nbee text\n\n## C\n\nsee text\n\n# D\n\nend"
    drafts = chunker.chunk(text, "demo", "nested.md")

    assert [d.metadata.breadcrumb for d in drafts] == [
        ["A"],
        ["A", "B"],
        ["A", "C"],
        ["D"],
    ]
    assert drafts[1].content == "## B\n\nbee text"


def test_setext_heading_breadcrumb(chunker):
    """Test underlined headings are recognized."""
    drafts = chunker.chunk("Getting Started\n===============\n\nBody text.", "demo", "s.md")

    assert drafts[0].metadata.breadcrumb == ["Getting Started"]


def test_chunks_respect_token_limit_and_keep_text():
    """Test chunks stay within the limit and lose no content."""
    chunker = MarkdownChunker(word_count, max_tokens=12)
    paragraph = " ".join(f"Sentence number {i} has some words." for i in range(10))
    text = (
        "# Guide\n\n"
        f"{paragraph}\n\n"
        "- first item with several words here\n"
        "- second item with several words here\n"
        "- third item with several words here\n\n"
        "## Details\n\n"
        "Closing words for the guide.\n"
    )

    drafts = chunker.chunk(text, "demo", "guide.md")

    assert len(drafts) > 3
    for draft in drafts:
        assert draft.token_count <= 12
        assert draft.metadata.oversized is False
    assert squash("".join(d.content for d in drafts)) == squash(text)


def test_paragraph_split_between_sentences():
    """Test long paragraphs are divided only at sentence boundaries."""
    chunker = MarkdownChunker(word_count, max_tokens=12)
    text = " ".join("One two three four five." for _ in range(10))

    drafts = chunker.chunk(text, "demo", "p.md")

    assert len(drafts) == 5
    for draft in drafts:
        assert draft.content.endswith(".")
        assert draft.content == "One two three four five. One two three four five."


def test_oversized_code_block_kept_whole():
    """Test a code block larger than the limit is one flagged chunk."""
    chunker = MarkdownChunker(word_count, max_tokens=10)
    code = "```python\n" + "\n".join(f"x{i} = {i}" for i in range(20)) + "\n```"
    text = f"# Example\n\nSome intro text.\n\n{code}\n\nAfter the code."

    drafts = chunker.chunk(text, "demo", "code.md")

    oversized = [d for d in drafts if d.metadata.oversized]
    assert len(oversized) == 1
    assert oversized[0].content == code
    assert oversized[0].metadata.breadcrumb == ["Example"]
    for draft in drafts:
        if draft is not oversized[0]:
            assert "```" not in draft.content


def test_indices_and_count():
    """Test chunk indices are contiguous and share the total count."""
    chunker = MarkdownChunker(word_count, max_tokens=5)
    text = "\n\n".join(f"# Section {i}\n\nBody of section {i}." for i in range(4))

    drafts = chunker.chunk(text, "demo", "sections.md")

    assert [d.metadata.index for d in drafts] == list(range(len(drafts)))
    assert all(d.metadata.count == len(drafts) for d in drafts)


def test_table_and_front_matter_are_atomic():
    """Test tables and front matter are never split."""
    chunker = MarkdownChunker(word_count, max_tokens=4)
    table = "| a | b |\n| --- | --- |\n| one two | three four |"
    text = f"---\ntitle: Demo page here\n---\n\n{table}\n"

    drafts = chunker.chunk(text, "demo", "t.md")

    contents = [d.content for d in drafts]
    assert "---\ntitle: Demo page here\n---" in contents
    assert table in contents


def test_table_needs_matching_delimiter_row():
    """Test a pipe in a paragraph does not turn a heading or mismatched rows into a table."""
    blocks, _ = parse_blocks("Pick a | b\n---\n\nBody text.\n", "h.md")
    assert blocks[0].kind == "heading"
    assert blocks[0].level == 2

    blocks, _ = parse_blocks("a | b | c\n--- | ---\nx | y | z\n", "t.md")
    assert all(block.kind != "table" for block in blocks)

    blocks, _ = parse_blocks("a | b\n--- | ---\nx | y\n", "t.md")
    assert [block.kind for block in blocks] == ["table"]

def test_unterminated_fence_is_not_fatal(chunker):
    """Test an unclosed code fence is kept as text and reported."""
    text = "# Title\n\n```python\nprint('hi')\n"

    blocks, issues = parse_blocks(text, "broken.md")
    assert len(issues) == 1
    assert isinstance(issues[0], MalformedContent)
    assert issues[0].path == "broken.md"
    assert all(block.kind != "code" for block in blocks)

    drafts = chunker.chunk(text, "demo", "broken.md")
    assert "print('hi')" in "".join(d.content for d in drafts)


def test_parse_blocks_kinds():
    """Test block recognition."""
    text = (
        "# Heading\n\n"
        "A paragraph\nspanning lines.\n\n"
        "    indented code\n\n"
        "```\ncode\n```\n\n"
        "1. one\n2. two\n"
    )

    blocks, issues = parse_blocks(text)
    kinds = [b.kind for b in blocks if b.kind != "blank"]

    assert issues == []
    assert kinds == ["heading", "paragraph", "code", "code", "list"]
    list_block = [b for b in blocks if b.kind == "list"][0]
    assert list_block.items == ["1. one", "2. two"]


def test_invalid_max_tokens():
    """Test the chunker rejects a non-positive limit."""
    with pytest.raises(ValueError):
        MarkdownChunker(word_count, max_tokens=0)

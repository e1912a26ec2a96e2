"""Markdown-aware chunking with token bounds and heading breadcrumbs."""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from ragdocs.exceptions import MalformedContent
from ragdocs.models import ChunkDraft, ChunkMetadata

logger = logging.getLogger(__name__)

FENCE_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})(.*)$")
ATX_RE = re.compile(r"^ {0,3}(#{1,6})(?:[ \t]+(.*?))?(?:[ \t]+#+)?[ \t]*$")
SETEXT_RE = re.compile(r"^ {0,3}(=+|-+)[ \t]*$")
HR_RE = re.compile(r"^ {0,3}([-*_])(?:[ \t]*\1){2,}[ \t]*$")
LIST_RE = re.compile(r"^ {0,3}([-*+]|\d{1,9}[.)])(?:[ \t]+|$)")
TABLE_DELIM_RE = re.compile(r"^ {0,3}\|?[ \t]*:?-+:?[ \t]*(?:\|[ \t]*:?-+:?[ \t]*)*\|?[ \t]*$")
SENTENCE_RE = re.compile(r"(?<=[.!?])\s+(?=\S)")

BLOCK_SEPARATOR = "\n\n"

ATOMIC_KINDS = {"heading", "code", "table", "frontmatter"}


@dataclass
class Block:
    """A structural unit of a markdown document."""

    kind: str
    text: str
    level: int = 0
    title: str = ""
    items: List[str] = field(default_factory=list)


def _is_indented(line: str) -> bool:
    return line.startswith("    ") or line.startswith("\t")


def _count_cells(line: str) -> int:
    row = line.strip()
    if row.startswith("|"):
        row = row[1:]
    if row.endswith("|") and not row.endswith("\\|"):
        row = row[:-1]
    return len(re.split(r"(?<!\\)\|", row))


def _starts_table(lines: List[str], i: int) -> bool:
    """A header row followed by a delimiter row with the same number of cells."""
    if i + 1 >= len(lines):
        return False
    header, delimiter = lines[i], lines[i + 1]
    if "|" not in header or "|" not in delimiter or not TABLE_DELIM_RE.match(delimiter):
        return False
    return _count_cells(header) == _count_cells(delimiter)


def _find_fence_end(lines: List[str], start: int, fence: str) -> Optional[int]:
    """Index of the line closing the fence opened at ``start``, if any."""
    char, length = fence[0], len(fence)
    for k in range(start + 1, len(lines)):
        stripped = lines[k].strip()
        if len(stripped) >= length and set(stripped) == {char}:
            return k
    return None


def _parse_list(lines: List[str], start: int) -> Tuple[Block, int]:
    """Consume a list starting at ``start``; items keep nested content."""
    items: List[List[str]] = []
    current = [lines[start]]
    j = start + 1
    n = len(lines)

    while j < n:
        line = lines[j]
        if not line.strip():
            k = j
            while k < n and not lines[k].strip():
                k += 1
            if k < n and (LIST_RE.match(lines[k]) or lines[k][:1] in (" ", "\t")):
                current.extend(lines[j:k])
                j = k
                continue
            break

        fence = FENCE_RE.match(line.lstrip())
        if fence and line[:1] in (" ", "\t"):
            end = _find_fence_end(lines, j, fence.group(1))
            if end is not None:
                current.extend(lines[j:end + 1])
                j = end + 1
                continue

        if HR_RE.match(line) or ATX_RE.match(line) or FENCE_RE.match(line):
            break
        if LIST_RE.match(line):
            items.append(current)
            current = [line]
        else:
            current.append(line)
        j += 1

    items.append(current)
    text = "\n".join(line for item in items for line in item)
    return Block("list", text, items=["\n".join(item) for item in items]), j


def parse_blocks(text: str, path: str = "") -> Tuple[List[Block], List[MalformedContent]]:
    """Split a markdown document into a flat sequence of blocks.

    Never raises on bad markdown: spans that cannot be parsed (such as an
    unterminated code fence) are kept as plain paragraph text and reported
    in the returned issue list.

    Returns:
        Tuple of (blocks, issues)
    """
    lines = text.splitlines()
    n = len(lines)
    blocks: List[Block] = []
    issues: List[MalformedContent] = []
    paragraph: List[str] = []
    i = 0

    def flush_paragraph():
        if paragraph:
            blocks.append(Block("paragraph", "\n".join(paragraph)))
            paragraph.clear()

    # YAML front matter
    if n and lines[0].strip() == "---":
        for j in range(1, n):
            if lines[j].strip() in ("---", "..."):
                blocks.append(Block("frontmatter", "\n".join(lines[:j + 1])))
                i = j + 1
                break

    while i < n:
        line = lines[i]

        if not line.strip():
            flush_paragraph()
            if not blocks or blocks[-1].kind != "blank":
                blocks.append(Block("blank", ""))
            i += 1
            continue

        fence = FENCE_RE.match(line)
        if fence:
            end = _find_fence_end(lines, i, fence.group(1))
            if end is None:
                issues.append(MalformedContent(
                    f"Unterminated code fence at line {i + 1}, treating it as text",
                    operation="chunk", path=path,
                ))
                paragraph.append(line)
                i += 1
                continue
            flush_paragraph()
            blocks.append(Block("code", "\n".join(lines[i:end + 1])))
            i = end + 1
            continue

        heading = ATX_RE.match(line)
        if heading:
            flush_paragraph()
            blocks.append(Block(
                "heading", line, level=len(heading.group(1)),
                title=(heading.group(2) or "").strip(),
            ))
            i += 1
            continue

        if paragraph and SETEXT_RE.match(line):
            title = " ".join(part.strip() for part in paragraph)
            level = 1 if line.strip().startswith("=") else 2
            blocks.append(Block("heading", "\n".join(paragraph + [line]), level=level, title=title))
            paragraph.clear()
            i += 1
            continue

        if HR_RE.match(line):
            flush_paragraph()
            blocks.append(Block("paragraph", line))
            i += 1
            continue

        if _starts_table(lines, i):
            flush_paragraph()
            end = i + 2
            while end < n and lines[end].strip() and "|" in lines[end]:
                end += 1
            blocks.append(Block("table", "\n".join(lines[i:end])))
            i = end
            continue

        if LIST_RE.match(line):
            flush_paragraph()
            block, i = _parse_list(lines, i)
            blocks.append(block)
            continue

        if not paragraph and _is_indented(line):
            end = i
            while end < n:
                if _is_indented(lines[end]):
                    end += 1
                elif not lines[end].strip():
                    k = end
                    while k < n and not lines[k].strip():
                        k += 1
                    if k < n and _is_indented(lines[k]):
                        end = k
                    else:
                        break
                else:
                    break
            blocks.append(Block("code", "\n".join(lines[i:end])))
            i = end
            continue

        paragraph.append(line)
        i += 1

    flush_paragraph()
    return blocks, issues


class MarkdownChunker:
    """Splits markdown documents into token-bounded, structure-preserving chunks.

    Blocks are accumulated greedily while the running token count stays
    within ``max_tokens``. Every heading starts a new chunk, and no block is
    ever cut in the middle: paragraphs may be divided only between
    sentences and lists only between items. A unit that alone exceeds the
    limit becomes its own chunk, flagged ``oversized`` in its metadata.
    """

    def __init__(self, token_counter: Callable[[str], int], max_tokens: int):
        """Initialize the chunker.

        Args:
            token_counter: Returns the token count of a text without embedding it
            max_tokens: Token limit of the embedding model
        """
        if max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        self.count_tokens = token_counter
        self.max_tokens = max_tokens

    def chunk(self, text: str, documentation: str, path: str) -> List[ChunkDraft]:
        """Split a document into ordered chunk drafts.

        Args:
            text: Markdown source
            documentation: Name of the owning documentation
            path: Relative path of the file

        Returns:
            List of ChunkDraft objects; empty for empty documents
        """
        if not text or not text.strip():
            return []

        blocks, issues = parse_blocks(text, path)
        for issue in issues:
            logger.warning(f"{documentation}/{path}: {issue}")

        segments = self._segment(blocks)
        total = len(segments)

        drafts = []
        for index, (content, breadcrumb) in enumerate(segments):
            tokens = self.count_tokens(content)
            if tokens > self.max_tokens:
                logger.info(
                    f"{documentation}/{path}: chunk {index} has {tokens} tokens "
                    f"(limit {self.max_tokens}) and cannot be split further"
                )
            drafts.append(ChunkDraft(
                content=content,
                token_count=tokens,
                metadata=ChunkMetadata(
                    documentation=documentation,
                    path=path,
                    breadcrumb=breadcrumb,
                    index=index,
                    count=total,
                    oversized=tokens > self.max_tokens,
                ),
            ))

        logger.debug(f"Created {total} chunks for {path}")
        return drafts

    def _units(self, block: Block) -> Tuple[List[str], str]:
        """Pieces a block may be divided into, and the separator between them."""
        if block.kind in ATOMIC_KINDS or self.count_tokens(block.text) <= self.max_tokens:
            return [block.text], BLOCK_SEPARATOR
        if block.kind == "list":
            return block.items, "\n"
        sentences = [s for s in SENTENCE_RE.split(block.text) if s.strip()]
        return sentences, " "

    def _segment(self, blocks: List[Block]) -> List[Tuple[str, List[str]]]:
        """First pass: group blocks into (content, breadcrumb) segments."""
        segments: List[Tuple[str, List[str]]] = []
        stack: List[Tuple[int, str]] = []
        text = ""
        breadcrumb: List[str] = []

        def flush():
            nonlocal text
            if text.strip():
                segments.append((text, breadcrumb))
            text = ""

        def add(piece: str, separator: str):
            nonlocal text, breadcrumb
            if text:
                candidate = text + separator + piece
                if self.count_tokens(candidate) <= self.max_tokens:
                    text = candidate
                    return
                flush()
            breadcrumb = [title for _, title in stack if title]
            text = piece
            if self.count_tokens(piece) > self.max_tokens:
                flush()

        for block in blocks:
            if block.kind == "blank":
                continue
            if block.kind == "heading":
                flush()
                while stack and stack[-1][0] >= block.level:
                    stack.pop()
                stack.append((block.level, block.title))
                add(block.text, BLOCK_SEPARATOR)
                continue

            units, separator = self._units(block)
            for position, unit in enumerate(units):
                add(unit, BLOCK_SEPARATOR if position == 0 else separator)

        flush()
        return segments

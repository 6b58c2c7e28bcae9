"""
Text segmentation for the chunker.

Plain text is split into sentences; Markdown is split into block-level
segments (headings, paragraphs, lists, quotes, tables, fenced code) grouped
by their heading path. Both are lightweight heuristics, not full parsers.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import List

logger = logging.getLogger(__name__)

_NEWLINES = re.compile(r"\r?\n+")
_HYPHENATED = re.compile(r"([a-z])([\u2013-])\s+([a-z])", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")
_BOUNDARY = re.compile(r"([.!?]+[\"'’”)\]]*)\s+")

# Tokens that end with a period without ending a sentence
ABBREVIATIONS = {
    "mr", "mrs", "ms", "dr", "prof", "sr", "jr", "st", "vs",
    "e.g", "i.e", "cf", "fig", "approx", "dept", "inc", "ltd",
}

_HEADING = re.compile(r"^(#{1,6})\s+(.*?)\s*#*\s*$")
_FENCE = re.compile(r"^\s*(```|~~~)")


def preprocess_text(text: str) -> str:
    """Join lines, re-attach words hyphenated across a line break, collapse whitespace."""
    text = _NEWLINES.sub(" ", text)
    text = _HYPHENATED.sub(r"\1\2\3", text)
    return _WHITESPACE.sub(" ", text)


def _is_abbreviation(token: str) -> bool:
    token = token.lstrip("([\"'").rstrip(".")
    if len(token) == 1 and token.isalpha() and token.isupper():
        return True
    return token.lower() in ABBREVIATIONS


def split_sentences(text: str) -> List[str]:
    """
    Split text into trimmed, non-empty sentences.

    A boundary is sentence-final punctuation followed by whitespace, except
    after a single capital initial ("J. Smith") or a known abbreviation.

    Args:
        text: Raw text, possibly spanning several lines

    Returns:
        List of sentences
    """
    normalized = preprocess_text(text)
    sentences = []
    start = 0

    for match in _BOUNDARY.finditer(normalized):
        punctuation = match.group(1)
        if punctuation == ".":
            words = normalized[start:match.start(1)].split()
            if words and _is_abbreviation(words[-1]):
                continue
        sentence = normalized[start:match.end(1)].strip()
        if sentence:
            sentences.append(sentence)
        start = match.end()

    tail = normalized[start:].strip()
    if tail:
        sentences.append(tail)
    return sentences


@dataclass
class MarkdownSegment:
    """A block of Markdown and the headings it sits under."""
    text: str
    kind: str
    header_path: List[str] = field(default_factory=list)

    @property
    def path_key(self) -> str:
        return "/".join(self.header_path)


def _drop_blank_lines(text: str) -> str:
    return "\n".join(line for line in text.split("\n") if line.strip())


def _block_kind(lines: List[str]) -> str:
    first = lines[0].lstrip()
    if first.startswith(">"):
        return "quote"
    if first.startswith("|"):
        return "table"
    if re.match(r"^([-*+]|\d+[.)])\s", first):
        return "list"
    if first.startswith("<"):
        return "html"
    return "paragraph"


def parse_markdown_segments(markdown: str) -> List[MarkdownSegment]:
    """Split Markdown into block segments, tracking the heading path of each."""
    segments = []
    header_path: List[str] = []
    block: List[str] = []

    def flush():
        if block:
            text = _drop_blank_lines("\n".join(block))
            if text:
                segments.append(MarkdownSegment(text, _block_kind(block), list(header_path)))
            block.clear()

    lines = markdown.replace("\r\n", "\n").split("\n")
    i = 0
    while i < len(lines):
        line = lines[i]
        fence = _FENCE.match(line)
        heading = _HEADING.match(line)

        if fence:
            flush()
            marker = fence.group(1)
            code = [line]
            i += 1
            while i < len(lines) and not lines[i].strip().startswith(marker):
                code.append(lines[i])
                i += 1
            code.append(lines[i] if i < len(lines) else marker)
            segments.append(MarkdownSegment("\n".join(code), "code", list(header_path)))
        elif heading:
            flush()
            depth = len(heading.group(1))
            title = heading.group(2)
            header_path = header_path[:depth - 1] + [title]
            segments.append(MarkdownSegment(line.strip(), "heading", list(header_path)))
        elif not line.strip():
            flush()
        else:
            block.append(line)
        i += 1

    flush()
    return segments


def merge_tiny_segments(segments: List[MarkdownSegment], min_length: int = 30) -> List[MarkdownSegment]:
    """Fold segments shorter than ``min_length`` into the previous non-heading segment of the same section."""
    merged: List[MarkdownSegment] = []
    for seg in segments:
        prev = merged[-1] if merged else None
        if (len(seg.text) < min_length and prev is not None
                and prev.kind != "heading" and seg.kind != "heading"
                and prev.path_key == seg.path_key):
            prev.text += "\n\n" + seg.text
        elif seg.text.strip():
            merged.append(MarkdownSegment(seg.text, seg.kind, list(seg.header_path)))
    return merged


def enforce_size_bounds(chunks: List[MarkdownSegment], min_size: int, max_size: int) -> List[MarkdownSegment]:
    """
    Cut oversized chunks and fold undersized ones into a neighbour.

    Short headings always merge forward into the next chunk; other short
    chunks join the previous chunk, or the next one, when it shares their
    heading path.
    """
    chunks = [MarkdownSegment(c.text, c.kind, list(c.header_path)) for c in chunks]
    final: List[MarkdownSegment] = []

    for i, curr in enumerate(chunks):
        text = curr.text.strip()
        nxt = chunks[i + 1] if i + 1 < len(chunks) else None
        prev = final[-1] if final else None

        if len(text) >= max_size:
            for j in range(0, len(text), max_size):
                final.append(MarkdownSegment(text[j:j + max_size], curr.kind, list(curr.header_path)))
        elif len(text) < min_size:
            if curr.text.startswith("#") and nxt is not None:
                nxt.text = curr.text + "\n\n" + nxt.text
            elif prev is not None and prev.path_key == curr.path_key:
                prev.text += "\n\n" + text
            elif nxt is not None and nxt.path_key == curr.path_key:
                nxt.text = text + "\n\n" + nxt.text
            else:
                final.append(MarkdownSegment(text, curr.kind, list(curr.header_path)))
        else:
            final.append(MarkdownSegment(text, curr.kind, list(curr.header_path)))

    return final


def group_by_headings(segments: List[MarkdownSegment], min_size: int = 30,
                      max_size: int = 2000) -> List[MarkdownSegment]:
    """Start a new chunk at every heading, then enforce size bounds."""
    chunks: List[MarkdownSegment] = []
    current: List[str] = []
    path: List[str] = []

    for seg in segments:
        if seg.kind == "heading" and current:
            chunks.append(MarkdownSegment("\n\n".join(current), "section", list(path)))
            current = []
        if seg.kind == "heading":
            path = seg.header_path
        current.append(seg.text)

    if current:
        chunks.append(MarkdownSegment("\n\n".join(current), "section", list(path)))

    return enforce_size_bounds(chunks, min_size, max_size)


def split_markdown_blocks(markdown: str, min_chunk_size: int = 30, max_chunk_size: int = 2000,
                          use_headings_only: bool = False) -> List[str]:
    """
    Split Markdown into semantic blocks for embedding.

    Args:
        markdown: Markdown source
        min_chunk_size: Blocks shorter than this are merged with a neighbour
        max_chunk_size: Upper bound applied when grouping by headings
        use_headings_only: Group whole sections under each heading

    Returns:
        List of block texts
    """
    merged = merge_tiny_segments(parse_markdown_segments(markdown), min_chunk_size)

    if use_headings_only:
        return [c.text for c in group_by_headings(merged, min_chunk_size, max_chunk_size)]

    grouped: List[str] = []
    current_text = ""
    current_path = None
    for seg in merged:
        if current_path != seg.path_key:
            if current_text:
                grouped.append(current_text)
            current_text = seg.text
            current_path = seg.path_key
        else:
            current_text += "\n\n" + seg.text

    if current_text:
        grouped.append(current_text)
    logger.debug(f"Split markdown into {len(grouped)} blocks")
    return grouped

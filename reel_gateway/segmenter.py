from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator

DEFAULT_MAX_CHUNK_CHARS = 4500

# A sentence ends after terminal punctuation (Latin, ellipsis, Arabic, Devanagari)
# followed by whitespace, or right after a CJK full-width terminal mark.
_SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?…؟।])\s+|(?<=[。！？])")
_WORD_RE = re.compile(r"\S+")


@dataclass(frozen=True)
class TextChunk:
    index: int
    text: str


def split_sentences(text: str) -> list[str]:
    """
    Split text into sentence pieces, each keeping its trailing whitespace.

    Concatenating the pieces gives back the input exactly.
    """
    pieces: list[str] = []
    start = 0
    for match in _SENTENCE_BOUNDARY_RE.finditer(text):
        end = match.end()
        if end > start:
            pieces.append(text[start:end])
            start = end
    if start < len(text):
        pieces.append(text[start:])
    return pieces


def _pack_words(text: str, max_chars: int) -> Iterator[str]:
    current = ""
    for word in _WORD_RE.findall(text):
        if not current:
            current = word
        elif len(current) + 1 + len(word) <= max_chars:
            current = f"{current} {word}"
        else:
            yield current
            current = word
    if current:
        yield current


def split_text(text: str, max_chars: int = DEFAULT_MAX_CHUNK_CHARS) -> list[str]:
    """
    Split `text` into chunks of at most `max_chars` characters.

    Sentences are packed greedily; a sentence longer than the limit is split into
    word-packed sub-chunks. A single word longer than the limit becomes its own
    oversized chunk. Text inside a chunk is kept verbatim; only whitespace at chunk
    boundaries (and inside over-long sentences) is dropped, so joining the chunks
    with a single space preserves the word sequence.
    """
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")

    if len(text) <= max_chars:
        return [text] if text.strip() else []

    chunks: list[str] = []
    current = ""

    for piece in split_sentences(text):
        candidate = current + piece
        if len(candidate.strip()) <= max_chars:
            current = candidate
            continue

        if current.strip():
            chunks.append(current.strip())
        current = ""

        if len(piece.strip()) <= max_chars:
            current = piece
            continue

        words = list(_pack_words(piece, max_chars))
        chunks.extend(words[:-1])
        # The tail keeps packing with the following sentences.
        current = words[-1] + " " if words else ""

    if current.strip():
        chunks.append(current.strip())

    return chunks


def chunk_text(text: str, max_chars: int = DEFAULT_MAX_CHUNK_CHARS) -> list[TextChunk]:
    return [TextChunk(index=i, text=c) for i, c in enumerate(split_text(text, max_chars))]

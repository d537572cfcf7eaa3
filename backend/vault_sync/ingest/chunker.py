"""Chunking utilities."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterator, Sequence

from vault_sync.models.entities import ChunkDraft

_SEGMENT_RE = re.compile(r"\n\s*\n", re.MULTILINE)
_SENTENCE_RE = re.compile(r"[^.!?\n]+[.!?]?", re.MULTILINE)


@dataclass(slots=True)
class Segment:
    text: str
    start: int
    end: int


def chunk_text(
    text: str,
    chunk_size: int = 1000,
    chunk_overlap: int = 200,
    min_chunk_size: int = 100,
) -> list[dict[str, Any]]:
    """Split text into slices of at most ``chunk_size`` characters.

    Paragraphs are packed together while they fit; oversized paragraphs are
    broken at sentence boundaries, then hard-split. Consecutive chunks share
    up to ``chunk_overlap`` characters of trailing segments. A trailing chunk
    shorter than ``min_chunk_size`` is folded into its predecessor, which
    may then run past ``chunk_size`` by less than ``min_chunk_size``.
    """
    if not text.strip():
        return []

    segments: list[Segment] = []
    for segment in _iter_segments(text):
        segments.extend(_shrink_segment(segment, chunk_size))

    chunks: list[dict[str, Any]] = []
    current: list[Segment] = []

    for segment in segments:
        if not current:
            current.append(segment)
            continue
        if segment.end - current[0].start <= chunk_size:
            current.append(segment)
            continue
        chunks.append(_finalize_chunk(text, current))
        current = _apply_overlap(current, chunk_overlap)
        while current and segment.end - current[0].start > chunk_size:
            current.pop(0)
        current.append(segment)

    if current:
        tail = _finalize_chunk(text, current)
        if chunks and tail["char_count"] < min_chunk_size:
            chunks[-1] = _span(text, chunks[-1]["start_char"], tail["end_char"])
            return chunks
        chunks.append(tail)

    return chunks


def _iter_segments(text: str) -> Iterator[Segment]:
    last_index = 0
    for match in _SEGMENT_RE.finditer(text):
        segment = _trim_segment(text, last_index, match.start())
        if segment:
            yield segment
        last_index = match.end()
    if last_index < len(text):
        segment = _trim_segment(text, last_index, len(text))
        if segment:
            yield segment


def _trim_segment(text: str, start: int, end: int) -> Segment | None:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    if start >= end:
        return None
    return Segment(text=text[start:end], start=start, end=end)


def _shrink_segment(segment: Segment, chunk_size: int) -> list[Segment]:
    if len(segment.text) <= chunk_size:
        return [segment]
    sentences = list(_sentence_segments(segment))
    if len(sentences) > 1:
        shrunk: list[Segment] = []
        for sentence in sentences:
            shrunk.extend(_shrink_segment(sentence, chunk_size))
        return shrunk
    return _split_segment(segment, chunk_size)


def _sentence_segments(segment: Segment) -> Iterator[Segment]:
    for match in _SENTENCE_RE.finditer(segment.text):
        sentence = match.group().strip()
        if not sentence:
            continue
        rel_start = match.start() + match.group().find(sentence)
        start = segment.start + rel_start
        yield Segment(text=sentence, start=start, end=start + len(sentence))


def _split_segment(segment: Segment, chunk_size: int) -> list[Segment]:
    pieces: list[Segment] = []
    for offset in range(0, len(segment.text), chunk_size):
        piece = segment.text[offset : offset + chunk_size]
        start = segment.start + offset
        pieces.append(Segment(text=piece, start=start, end=start + len(piece)))
    return pieces


def _finalize_chunk(text: str, segments: Sequence[Segment]) -> dict[str, Any]:
    chunk = _span(text, segments[0].start, segments[-1].end)
    chunk["meta"] = {"segment_count": len(segments)}
    return chunk


def _span(text: str, start: int, end: int) -> dict[str, Any]:
    return {
        "text": text[start:end],
        "start_char": start,
        "end_char": end,
        "char_count": end - start,
        "meta": {},
    }


def _apply_overlap(segments: Sequence[Segment], chunk_overlap: int) -> list[Segment]:
    if not segments or chunk_overlap <= 0:
        return []
    retained: list[Segment] = []
    budget = 0
    for segment in reversed(segments):
        length = segment.end - segment.start
        if budget + length > chunk_overlap:
            break
        retained.append(segment)
        budget += length
    return list(reversed(retained))


def build_chunk_drafts(
    chunk_dicts: Sequence[dict[str, Any]],
    embeddings: Sequence[list[float]],
    file_metadata: dict[str, Any] | None = None,
) -> list[ChunkDraft]:
    """Pair chunk slices with their embeddings, indexed from zero."""
    if len(chunk_dicts) != len(embeddings):
        raise ValueError("chunk and embedding counts differ")
    drafts = []
    for index, (chunk, vector) in enumerate(zip(chunk_dicts, embeddings)):
        metadata = dict(file_metadata or {})
        metadata.update(
            {
                "start_char": chunk["start_char"],
                "end_char": chunk["end_char"],
                "chunk_count": len(chunk_dicts),
            }
        )
        drafts.append(ChunkDraft(chunk_index=index, content=chunk["text"], embedding=vector, metadata=metadata))
    return drafts


__all__ = ["chunk_text", "build_chunk_drafts"]

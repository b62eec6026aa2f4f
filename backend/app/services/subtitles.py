from __future__ import annotations

import re
from dataclasses import dataclass

INSTRUMENTAL_MARKER = "\U0001f3b5"
TIMECODE_SEPARATOR = "-->"

_BLOCK_SEPARATOR_PATTERN = re.compile(r"\n\s*\n")
_WHITESPACE_PATTERN = re.compile(r"\s+")


@dataclass(frozen=True)
class TranscriptSegment:
    index: str
    start: str
    end: str
    text: str
    is_instrumental: bool


def parse_subtitle_document(document: str) -> list[TranscriptSegment]:
    """Parse an SRT-style document into ordered segments.

    Malformed blocks (fewer than three lines, or a timecode line without
    ``-->``) are dropped rather than failing the whole document.
    """
    normalized = document.replace("\r\n", "\n").replace("\r", "\n").strip()
    if not normalized:
        return []

    segments: list[TranscriptSegment] = []
    for block in _BLOCK_SEPARATOR_PATTERN.split(normalized):
        lines = block.strip("\n").split("\n")
        if len(lines) < 3:
            continue

        time_parts = lines[1].split(TIMECODE_SEPARATOR)
        if len(time_parts) < 2:
            continue

        text = " ".join(lines[2:]).strip()
        segments.append(
            TranscriptSegment(
                index=lines[0].strip(),
                start=time_parts[0].strip(),
                end=time_parts[1].strip(),
                text=text,
                is_instrumental=INSTRUMENTAL_MARKER in text,
            )
        )
    return segments


def segments_to_text(segments: list[TranscriptSegment]) -> str:
    spoken = " ".join(segment.text for segment in segments if not segment.is_instrumental)
    return _WHITESPACE_PATTERN.sub(" ", spoken).strip()

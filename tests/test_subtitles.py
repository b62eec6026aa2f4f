from __future__ import annotations

from backend.app.services.subtitles import parse_subtitle_document, segments_to_text

SUBTITLE_DOCUMENT = """1
00:00:00,000 --> 00:00:02,500
Bom dia a todos.

2
00:00:02,500 --> 00:00:05,000
🎵

3
00:00:05,000 --> 00:00:09,000
A vacina foi aprovada
pela agencia ontem.
"""


def test_parse_subtitle_document_keeps_order_and_flags_instrumental() -> None:
    segments = parse_subtitle_document(SUBTITLE_DOCUMENT)

    assert [segment.index for segment in segments] == ["1", "2", "3"]
    assert segments[0].start == "00:00:00,000"
    assert segments[0].end == "00:00:02,500"
    assert segments[1].is_instrumental is True
    assert segments[2].text == "A vacina foi aprovada pela agencia ontem."


def test_segments_to_text_excludes_instrumental_segments() -> None:
    segments = parse_subtitle_document(SUBTITLE_DOCUMENT)

    assert segments_to_text(segments) == (
        "Bom dia a todos. A vacina foi aprovada pela agencia ontem."
    )


def test_parse_subtitle_document_skips_malformed_blocks() -> None:
    document = (
        "1\n00:00:00,000 --> 00:00:01,000\nValid line\n\n"
        "2\nno timecode here\nDropped\n\n"
        "3\n00:00:02,000 --> 00:00:03,000\n\n"
        "4\n00:00:04,000 --> 00:00:05,000\nAlso valid\n"
    )

    segments = parse_subtitle_document(document)

    assert [segment.index for segment in segments] == ["1", "4"]


def test_parse_subtitle_document_handles_crlf_and_empty_input() -> None:
    assert parse_subtitle_document("") == []
    assert parse_subtitle_document("   \r\n  ") == []

    segments = parse_subtitle_document("1\r\n00:00:00,000 --> 00:00:01,000\r\nOla\r\n")
    assert len(segments) == 1
    assert segments[0].text == "Ola"


def test_marker_inside_text_marks_segment_instrumental() -> None:
    segments = parse_subtitle_document(
        "1\n00:00:00,000 --> 00:00:01,000\n[Musica] 🎵 tocando\n"
    )

    assert segments[0].is_instrumental is True
    assert segments_to_text(segments) == ""

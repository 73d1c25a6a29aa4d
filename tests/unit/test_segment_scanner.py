import json

import pytest

from inference_gateway.relay.scanner import SegmentScanner, SegmentTooLarge
from inference_gateway.relay.stream import decode_segment, segment_texts
from tests.helpers import gemini_array_body, gemini_segment


def _texts(chunks: list[bytes]) -> list[str]:
    scanner = SegmentScanner()
    texts: list[str] = []
    for chunk in chunks:
        for raw in scanner.feed(chunk):
            texts.extend(segment_texts(decode_segment(raw)))
    scanner.finish()
    return texts


STREAM = gemini_array_body(
    gemini_segment("Hola, "),
    gemini_segment('she said "héllo" \\ 世界 🚀'),
    gemini_segment("line\nbreak", "été"),
)
EXPECTED = ["Hola, ", 'she said "héllo" \\ 世界 🚀', "line\nbreak", "été"]


def test_single_fragment() -> None:
    assert _texts([STREAM]) == EXPECTED


def test_any_two_way_split_gives_same_text() -> None:
    for cut in range(1, len(STREAM)):
        assert _texts([STREAM[:cut], STREAM[cut:]]) == EXPECTED, f"split at byte {cut}"


def test_byte_at_a_time() -> None:
    assert _texts([STREAM[i : i + 1] for i in range(len(STREAM))]) == EXPECTED


def test_split_inside_multibyte_character() -> None:
    # ensure_ascii=False keeps raw UTF-8 in the stream instead of \u escapes
    raw = json.dumps(gemini_segment("世界"), ensure_ascii=False).encode("utf-8")
    start = raw.index("世".encode())
    cuts = [0, start + 1, start + 2, start + 4, len(raw)]
    chunks = [raw[a:b] for a, b in zip(cuts, cuts[1:])]
    assert _texts(chunks) == ["世界"]


def test_split_inside_escape_sequence() -> None:
    raw = b'{"candidates":[{"content":{"parts":[{"text":"a\\"b\\u00e9"}]}}]}'
    backslash = raw.index(b"\\")
    unicode_escape = raw.index(b"\\u")
    assert _texts([raw[: backslash + 1], raw[backslash + 1 :]]) == ['a"bé']
    assert _texts([raw[: unicode_escape + 3], raw[unicode_escape + 3 :]]) == ['a"bé']


def test_split_in_key_produces_one_segment() -> None:
    scanner = SegmentScanner()
    first = b'[{"candidates": [{"content": {"parts": [{"te'
    second = b'xt": "hello"}]}}]}]'

    assert scanner.feed(first) == []
    segments = scanner.feed(second)

    assert len(segments) == 1
    assert segment_texts(decode_segment(segments[0])) == ["hello"]


def test_braces_inside_strings_do_not_close_segment() -> None:
    raw = json.dumps(gemini_segment("} ] { [ \"}\"")).encode()
    assert _texts([raw[:20], raw[20:]]) == ['} ] { [ "}"']


def test_sse_framing_is_tolerated() -> None:
    body = b"".join(
        b"data: " + json.dumps(gemini_segment(text)).encode() + b"\r\n\r\n"
        for text in ("a", "b")
    )
    assert _texts([body[:9], body[9:]]) == ["a", "b"]


def test_finish_reports_and_drops_trailing_bytes() -> None:
    scanner = SegmentScanner()
    assert scanner.feed(b'[{"candidates": [') == []
    assert scanner.pending is True
    assert scanner.finish() is True
    assert scanner.pending is False


def test_finish_drops_dangling_partial_character() -> None:
    scanner = SegmentScanner()
    scanner.feed(json.dumps(gemini_segment("x")).encode() + "世".encode()[:1])
    assert scanner.finish() is True


def test_finish_after_clean_close_reports_nothing() -> None:
    scanner = SegmentScanner()
    assert len(scanner.feed(STREAM)) == 3
    assert scanner.finish() is False


def test_invalid_utf8_raises() -> None:
    scanner = SegmentScanner()
    with pytest.raises(UnicodeDecodeError):
        scanner.feed(b'[{"text": "\xff\xfe"}]')


def test_unclosed_segment_over_limit_raises() -> None:
    scanner = SegmentScanner(max_segment_bytes=64)
    assert scanner.feed(b'[{"candidates": [') == []

    with pytest.raises(SegmentTooLarge) as exc_info:
        scanner.feed(b'{"text": "' + b"x" * 100)
    assert exc_info.value.limit == 64


def test_segment_at_limit_is_accepted() -> None:
    raw = json.dumps(gemini_segment("fits")).encode()
    scanner = SegmentScanner(max_segment_bytes=len(raw))
    assert scanner.feed(raw[:10]) == []
    assert len(scanner.feed(raw[10:])) == 1
    assert scanner.finish() is False


def test_segments_before_oversized_one_are_returned() -> None:
    small = json.dumps(gemini_segment("ok")).encode()
    scanner = SegmentScanner(max_segment_bytes=len(small))

    segments = scanner.feed(small + b',{"text": "' + b"y" * 200)

    assert [segment_texts(decode_segment(raw)) for raw in segments] == [["ok"]]
    with pytest.raises(SegmentTooLarge):
        scanner.finish()


def test_oversized_segment_completed_in_one_fragment_raises() -> None:
    scanner = SegmentScanner(max_segment_bytes=32)
    with pytest.raises(SegmentTooLarge):
        scanner.feed(gemini_array_body(gemini_segment("z" * 64)))

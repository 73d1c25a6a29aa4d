"""Incremental scanner for the upstream's stream of JSON objects.

``streamGenerateContent`` emits a JSON array of response objects (or, with
``alt=sse``, one object per ``data:`` line). The transport splits that text at
arbitrary byte offsets, so the scanner carries state across fragments:

* an incremental UTF-8 decoder, so a multi-byte character cut in half is
  completed by the next fragment;
* the undelivered text, starting at the ``{`` of the open segment;
* structural state: nesting depth, whether the cursor is inside a string, and
  whether the previous character was a backslash inside that string.

Characters outside any object (``[``, ``,``, ``]``, whitespace, ``data:``
prefixes) are framing and are skipped. A segment is complete when depth
returns to zero; its raw text is handed back undecoded. Text of an open
segment is held as a list of pieces and joined once, when the segment closes.
"""

import codecs
import re

# Characters that can change structural state inside an object.
_STRUCTURAL = re.compile(r'[{}\[\]"]')
_STRING_STOP = re.compile(r'["\\]')


class SegmentTooLarge(Exception):
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Upstream segment exceeded {limit} bytes")


class SegmentScanner:
    """Split a fragmented upstream body into raw segment texts.

    ``max_segment_bytes`` bounds the UTF-8 size of a single segment. Once a
    segment outgrows it the held text is dropped and ``SegmentTooLarge`` is
    raised: immediately when the offending fragment completed nothing, or on
    the next ``feed``/``finish`` call when segments completed before it still
    have to be handed back.
    """

    def __init__(self, max_segment_bytes: int | None = None) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="strict")
        self._max_segment_bytes = max_segment_bytes
        self._held: list[str] = []
        self._held_bytes = 0
        self._overflowed = False
        self._depth = 0
        self._in_string = False
        self._escaped = False

    @property
    def pending(self) -> bool:
        """True when bytes or text are held that have not formed a segment."""
        undecoded, _ = self._decoder.getstate()
        return bool(undecoded) or self._depth > 0

    def feed(self, chunk: bytes) -> list[str]:
        """Consume one fragment and return the raw text of completed segments.

        Raises ``UnicodeDecodeError`` when the bytes are not valid UTF-8 and
        ``SegmentTooLarge`` when a segment outgrows the size limit.
        """
        self._raise_if_overflowed()
        text = self._decoder.decode(chunk)
        segments: list[str] = []
        start = 0
        i = 0
        n = len(text)

        while i < n:
            if self._depth == 0:
                i = text.find("{", i)
                if i < 0:
                    break
                start = i
                self._depth = 1
                i += 1
                continue

            if self._in_string:
                if self._escaped:
                    self._escaped = False
                    i += 1
                    continue
                match = _STRING_STOP.search(text, i)
                if match is None:
                    break
                i = match.start()
                if text[i] == "\\":
                    self._escaped = True
                else:
                    self._in_string = False
                i += 1
                continue

            match = _STRUCTURAL.search(text, i)
            if match is None:
                break
            i = match.start()
            ch = text[i]
            if ch == '"':
                self._in_string = True
            elif ch in "{[":
                self._depth += 1
            else:
                self._depth -= 1
                if self._depth == 0:
                    if not self._hold(text[start : i + 1]):
                        break
                    segments.append("".join(self._held))
                    self._held = []
                    self._held_bytes = 0
            i += 1

        if self._depth > 0 and not self._overflowed:
            self._hold(text[start:])
        if self._overflowed and not segments:
            self._raise_if_overflowed()
        return segments

    def finish(self) -> bool:
        """Drop whatever never completed a segment; report whether anything was dropped."""
        self._raise_if_overflowed()
        dropped = self.pending
        self._decoder.reset()
        self._held = []
        self._held_bytes = 0
        self._depth = 0
        self._in_string = False
        self._escaped = False
        return dropped

    def _hold(self, piece: str) -> bool:
        self._held_bytes += len(piece.encode("utf-8"))
        if self._max_segment_bytes is not None and self._held_bytes > self._max_segment_bytes:
            self._overflowed = True
            self._held = []
            self._held_bytes = 0
            return False
        self._held.append(piece)
        return True

    def _raise_if_overflowed(self) -> None:
        if self._overflowed:
            raise SegmentTooLarge(self._max_segment_bytes or 0)

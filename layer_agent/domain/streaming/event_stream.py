from typing import List, Optional
import codecs


DATA_PREFIX = "data:"


class EventStreamBuffer:
    """Frames a byte stream into ``data:`` record payloads.

    Records are newline delimited. A trailing partial line from one read is
    carried into the next, and UTF-8 sequences split across reads are decoded
    incrementally.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> List[str]:
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return [payload for payload in map(self._payload, lines) if payload is not None]

    def flush(self) -> List[str]:
        """Return the payload of any unterminated final line"""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        payload = self._payload(tail)
        return [payload] if payload is not None else []

    @property
    def pending(self) -> str:
        return self._buffer

    @staticmethod
    def _payload(line: str) -> Optional[str]:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return None
        payload = line[len(DATA_PREFIX):]
        if payload.startswith(" "):
            payload = payload[1:]
        if not payload.strip():
            return None
        return payload

"""
Newline-delimited JSON framing for streamed model responses.

Network chunks do not line up with frames: a chunk can end mid-line or
carry several lines. The decoder buffers bytes until a newline completes a
frame; lines that do not parse as a JSON object are skipped.
"""
import json
import logging
from typing import Any, AsyncIterator, Dict, List

logger = logging.getLogger(__name__)


class NDJSONDecoder:
    """Incremental NDJSON decoder."""

    def __init__(self):
        self._buffer = bytearray()

    def feed(self, chunk: bytes) -> List[Dict[str, Any]]:
        """Add a chunk and return every frame it completed."""
        self._buffer.extend(chunk)
        frames = []
        while True:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            line = bytes(self._buffer[:newline])
            del self._buffer[:newline + 1]
            frame = self._parse(line)
            if frame is not None:
                frames.append(frame)
        return frames

    def flush(self) -> List[Dict[str, Any]]:
        """Parse whatever remains after the stream ended without a final newline."""
        line = bytes(self._buffer)
        self._buffer.clear()
        frame = self._parse(line)
        return [frame] if frame is not None else []

    @staticmethod
    def _parse(line: bytes):
        line = line.strip()
        if not line:
            return None
        try:
            frame = json.loads(line)
        except ValueError:
            logger.debug(f"Skipping malformed stream frame: {line[:200]!r}")
            return None
        if not isinstance(frame, dict):
            logger.debug("Skipping non-object stream frame")
            return None
        return frame


async def iter_ndjson(chunks: AsyncIterator[bytes]) -> AsyncIterator[Dict[str, Any]]:
    """Decode an async stream of byte chunks into JSON object frames."""
    decoder = NDJSONDecoder()
    async for chunk in chunks:
        for frame in decoder.feed(chunk):
            yield frame
    for frame in decoder.flush():
        yield frame

"""
Chunked, restartable file source for streamed uploads
"""

import logging
import os
import stat
from typing import AsyncIterator, BinaryIO, Optional

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_SIZE = 4096


class ChunkedFileReader:
    """
    Reads a file in fixed-size blocks for use as a request body.

    The transport may replay a body when it retries a request. When the
    handle has been closed (end of stream, or a failed attempt) the next
    read reopens the file from byte 0, so a replay always sends the whole
    file again rather than continuing from a stale offset.

    Only ``__aiter__`` is provided: httpx treats any sync iterable as a
    sync stream, which an AsyncClient refuses. Sync consumers can use
    ``iter(reader.next_chunk, b"")``.

    Example:
        with ChunkedFileReader("video.mp4") as reader:
            await http.send("PUT", url, content=reader)
    """

    def __init__(self, path, block_size: Optional[int] = None):
        self.path = os.fspath(path)
        st = os.stat(self.path)
        self._size = st.st_size
        self.block_size = block_size or getattr(st, "st_blksize", 0) or DEFAULT_BLOCK_SIZE

        if not stat.S_ISREG(st.st_mode) and not self._size:
            raise OSError(f"{self.path} is not a readable file with fixed size")

        self._fh: Optional[BinaryIO] = None
        self._remaining = self._size
        self.reset()

    @property
    def size(self) -> int:
        return self._size

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def closed(self) -> bool:
        return self._fh is None or self._fh.closed

    def reset(self) -> None:
        """Reopen the file from the beginning."""
        self.close()
        try:
            self._fh = open(self.path, "rb")
        except OSError as ex:
            raise OSError(f"Could not open {self.path}: {ex}") from ex
        self._remaining = self._size

    def next_chunk(self) -> bytes:
        """Return the next block, or ``b""`` once the file is exhausted."""
        if self.closed:
            logger.debug("[S3Objects][Reader] reopening path=%s", self.path)
            self.reset()

        try:
            buffer = self._fh.read(self.block_size)
        except OSError:
            self.close()
            raise

        if not buffer:
            if self._remaining:
                remaining = self._remaining
                self.close()
                raise OSError(
                    f"Error while reading upload content {self.path} ({remaining} remaining)"
                )
            self.close()
            return b""

        self._remaining -= len(buffer)
        return buffer

    def _rewind_if_started(self) -> None:
        if self.closed or self._remaining != self._size:
            self.reset()

    async def __aiter__(self) -> AsyncIterator[bytes]:
        self._rewind_if_started()
        while True:
            chunk = self.next_chunk()
            if not chunk:
                return
            yield chunk

    def close(self) -> None:
        if self._fh is not None and not self._fh.closed:
            self._fh.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

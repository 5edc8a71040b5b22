"""Intake sources: stdin pipe and tailed log file, both yielding complete lines."""

import asyncio
import codecs
import logging
import os
import stat
import sys
import time

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536


class LineBuffer:
    """Splits a chunked byte stream into lines, holding back a trailing partial line.

    Blank lines are returned as-is so the intake counts them as skipped.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._partial = ""

    def feed(self, chunk: bytes) -> list[str]:
        data = self._partial + self._decoder.decode(chunk)
        lines = data.split("\n")
        # If data doesn't end with \n, last element is a partial line
        self._partial = lines.pop()
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        """Return whatever is left once the stream has ended."""
        rest = self._partial + self._decoder.decode(b"", final=True)
        self._partial = ""
        return [rest.rstrip("\r")] if rest else []


class StdinSource:
    """Reads newline-delimited text from a pipe until EOF or inactivity timeout."""

    def __init__(self, timeout: float, stream=None, reader: asyncio.StreamReader | None = None,
                 chunk_size: int = CHUNK_SIZE):
        self._timeout = timeout
        self._stream = stream if stream is not None else sys.stdin
        self._reader = reader
        self._chunk_size = chunk_size
        self._file = None
        self.end_reason: str | None = None

    async def _open(self):
        fileno = self._stream.fileno()
        if stat.S_ISREG(os.fstat(fileno).st_mode):
            # Pipe transports reject regular files (e.g. `< access.log`).
            self._file = os.fdopen(os.dup(fileno), "rb")
            return
        loop = asyncio.get_running_loop()
        self._reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(self._reader)
        await loop.connect_read_pipe(lambda: protocol, self._stream)

    async def _read_chunk(self) -> bytes:
        if self._file is not None:
            return await asyncio.to_thread(self._file.read1, self._chunk_size)
        return await self._reader.read(self._chunk_size)

    async def lines(self):
        if self._reader is None and self._file is None:
            await self._open()
        buffer = LineBuffer()
        try:
            while True:
                try:
                    chunk = await asyncio.wait_for(self._read_chunk(), timeout=self._timeout)
                except asyncio.TimeoutError:
                    logger.info("No input for %.1fs, closing intake", self._timeout)
                    self.end_reason = "timeout"
                    break
                if not chunk:
                    logger.info("End of input stream")
                    self.end_reason = "eof"
                    break
                for line in buffer.feed(chunk):
                    yield line
            for line in buffer.flush():
                yield line
        finally:
            if self._file is not None:
                self._file.close()


class _TailHandler(FileSystemEventHandler):
    """Watchdog handler that pokes the event loop when the tailed file changes."""

    def __init__(self, path: str, notify):
        super().__init__()
        self._path = path
        self._notify = notify

    def _matches(self, event) -> bool:
        return not event.is_directory and os.path.abspath(event.src_path) == self._path

    def on_modified(self, event):
        if self._matches(event):
            self._notify()

    def on_created(self, event):
        if self._matches(event):
            logger.info("Watched file created: %s", self._path)
            self._notify()

    def on_moved(self, event):
        if event.is_directory:
            return
        if self._path in (os.path.abspath(event.src_path), os.path.abspath(event.dest_path)):
            self._notify()


class FileTailSource:
    """Tails a log file with watchdog, like ``tail -f``.

    Starts at the end of an existing file unless ``from_start`` is set; a file
    created after startup is read from its beginning. Rotation (a new inode
    at the path) drains the old file and then reads the new one from offset
    0; truncation rewinds to offset 0. Stops after ``timeout`` seconds
    without new bytes.
    """

    def __init__(self, path: str, timeout: float, from_start: bool = False,
                 observer_factory=Observer):
        self._path = os.path.abspath(path)
        self._timeout = timeout
        self._from_start = from_start
        self._observer_factory = observer_factory
        self._fh = None
        self._inode = None
        self.end_reason: str | None = None

    def _open_file(self, seek_end: bool) -> bool:
        try:
            self._fh = open(self._path, "rb")
        except FileNotFoundError:
            logger.debug("Waiting for file %s to appear...", self._path)
            return False
        self._inode = os.fstat(self._fh.fileno()).st_ino
        if seek_end:
            self._fh.seek(0, os.SEEK_END)
        logger.info("Tailing %s (inode=%d) from offset %d",
                    self._path, self._inode, self._fh.tell())
        return True

    def _close_file(self):
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    def _read_new(self) -> bytes:
        if self._fh is None and not self._open_file(seek_end=False):
            return b""
        try:
            st = os.stat(self._path)
        except FileNotFoundError:
            # moved away and not recreated yet; the old handle is still readable
            return self._fh.read()

        if st.st_ino != self._inode:
            logger.info("File rotation detected for %s", self._path)
            data = self._fh.read()
            self._close_file()
            if self._open_file(seek_end=False):
                data += self._fh.read()
            return data

        if st.st_size < self._fh.tell():
            logger.info("File truncation detected for %s", self._path)
            self._fh.seek(0)
        return self._fh.read()

    async def lines(self):
        loop = asyncio.get_running_loop()
        wake = asyncio.Event()
        handler = _TailHandler(self._path, lambda: loop.call_soon_threadsafe(wake.set))
        observer = self._observer_factory()
        observer.schedule(handler, os.path.dirname(self._path), recursive=False)
        observer.start()

        buffer = LineBuffer()
        self._open_file(seek_end=not self._from_start)
        try:
            last_data = time.monotonic()
            data = self._read_new() if self._fh is not None else b""
            while True:
                if data:
                    last_data = time.monotonic()
                    for line in buffer.feed(data):
                        yield line
                remaining = self._timeout - (time.monotonic() - last_data)
                if remaining <= 0:
                    logger.info("No new data in %s for %.1fs, closing intake",
                                self._path, self._timeout)
                    self.end_reason = "timeout"
                    break
                try:
                    await asyncio.wait_for(wake.wait(), timeout=remaining)
                except asyncio.TimeoutError:
                    continue
                wake.clear()
                data = self._read_new()
            for line in buffer.flush():
                yield line
        finally:
            observer.stop()
            observer.join(timeout=5)
            self._close_file()


def create_source(config):
    if config.input_file:
        return FileTailSource(config.input_file, config.timeout, from_start=config.from_start)
    return StdinSource(config.timeout)

"""Byte-range access to the file being uploaded."""

import io
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Union

from .exceptions import TransferAborted, TransportError

logger = logging.getLogger(__name__)

PROBE_SIZE = 1024


class UploadSource(ABC):
    """Something with a name and a size that can be read by byte range."""

    name: str

    @property
    @abstractmethod
    def size(self) -> int:
        ...

    @abstractmethod
    def _open(self) -> BinaryIO:
        ...

    def probe(self) -> bool:
        """Return True if the first bytes of the source can be read."""
        try:
            with self._open() as f:
                f.read(PROBE_SIZE)
            return True
        except OSError as e:
            logger.warning(f"Source {self.name} is not readable: {e}")
            return False

    def read_range(self, start: int, end: int) -> bytes:
        """Read bytes ``start`` through ``end`` inclusive."""
        with self._open() as f:
            f.seek(start)
            return f.read(end - start + 1)

    def open_range(
        self,
        start: int,
        end: int,
        on_progress: Optional[Callable[[int], None]] = None,
        is_aborted: Optional[Callable[[], bool]] = None,
    ) -> "ChunkStream":
        """Open a streaming reader over bytes ``start`` through ``end`` inclusive.

        Raises:
            TransportError: If the source cannot be opened, so the part is retried
        """
        try:
            f = self._open()
        except OSError as e:
            raise TransportError(f"Cannot open {self.name}: {e}")
        try:
            f.seek(start)
        except OSError as e:
            f.close()
            raise TransportError(f"Cannot seek {self.name} to offset {start}: {e}")
        return ChunkStream(f, end - start + 1, on_progress, is_aborted, name=self.name)


class FileSource(UploadSource):
    """A file on the local filesystem."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self.name = self.path.name

    @property
    def size(self) -> int:
        return os.path.getsize(self.path)

    def _open(self) -> BinaryIO:
        return open(self.path, "rb")


class BytesSource(UploadSource):
    """An in-memory payload uploaded under ``name``."""

    def __init__(self, data: bytes, name: str) -> None:
        self.data = data
        self.name = name

    @property
    def size(self) -> int:
        return len(self.data)

    def _open(self) -> BinaryIO:
        return io.BytesIO(self.data)


@dataclass(frozen=True)
class ByteRange:
    """Request body made of an inclusive byte range of a source."""

    source: UploadSource
    start: int
    end: int

    def __len__(self) -> int:
        return self.end - self.start + 1


class ChunkStream:
    """File-like reader limited to one chunk.

    Reports the running byte count after every read and raises
    :class:`TransferAborted` once ``is_aborted`` returns True, which interrupts
    the request body mid-transfer. Read errors surface as :class:`TransportError`.
    """

    def __init__(
        self,
        f: BinaryIO,
        length: int,
        on_progress: Optional[Callable[[int], None]] = None,
        is_aborted: Optional[Callable[[], bool]] = None,
        name: str = "source",
    ) -> None:
        self._f = f
        self._name = name
        self._length = length
        self._remaining = length
        self._on_progress = on_progress
        self._is_aborted = is_aborted

    def __len__(self) -> int:
        return self._length

    def read(self, size: int = -1) -> bytes:
        if self._is_aborted and self._is_aborted():
            raise TransferAborted()
        if self._remaining <= 0:
            return b""
        if size is None or size < 0 or size > self._remaining:
            size = self._remaining
        try:
            data = self._f.read(size)
        except OSError as e:
            raise TransportError(f"Cannot read {self._name}: {e}")
        self._remaining -= len(data)
        if self._on_progress:
            self._on_progress(self._length - self._remaining)
        return data

    def close(self) -> None:
        self._f.close()

    def __enter__(self) -> "ChunkStream":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

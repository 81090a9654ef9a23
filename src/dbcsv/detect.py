"""Container and compression detection by content sniffing.

Detection never seeks: the sniffed head bytes are replayed in front of the
rest of the stream, so standard input and pipes work the same as files.
"""

from __future__ import annotations

import gzip
import io
import logging
import zlib
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO

import zstandard

logger = logging.getLogger(__name__)

OLE2_MAGIC = b"\xd0\xcf\x11\xe0"
ZIP_MAGIC = b"PK\x03\x04"
GZIP_MAGIC = b"\x1f\x8b"
ZSTD_MAGIC = b"\x28\xb5\x2f\xfd"

# Bytes read ahead for sniffing; compressed heads are partially inflated from it.
SNIFF_SIZE = 4096


class Container(str, Enum):
    CSV = "csv"
    XLS = "xls"
    XLSX = "xlsx"
    UNKNOWN = "unknown"


class Compression(str, Enum):
    NONE = "none"
    GZIP = "gzip"
    ZSTD = "zstd"


@dataclass(frozen=True)
class FileType:
    """Container format plus the outermost compression wrapper."""

    container: Container
    compression: Compression = Compression.NONE

    @property
    def is_spreadsheet(self) -> bool:
        return self.container in (Container.XLS, Container.XLSX)

    def __str__(self) -> str:
        if self.compression is Compression.NONE:
            return self.container.value
        return f"{self.container.value}+{self.compression.value}"


class ReplayReader(io.RawIOBase):
    """Raw stream serving already consumed ``head`` bytes before the rest of ``stream``."""

    def __init__(self, head: bytes, stream: BinaryIO) -> None:
        super().__init__()
        self._head = memoryview(head)
        self._stream = stream

    def readable(self) -> bool:
        return True

    def readinto(self, b: bytearray | memoryview) -> int:  # type: ignore[override]
        if len(self._head):
            n = min(len(b), len(self._head))
            b[:n] = self._head[:n]
            self._head = self._head[n:]
            return n
        data = self._stream.read(len(b))
        n = len(data)
        b[:n] = data
        return n

    def close(self) -> None:
        try:
            self._stream.close()
        finally:
            super().close()


def _read_upto(stream: BinaryIO, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _compression_of(head: bytes) -> Compression:
    if head.startswith(GZIP_MAGIC):
        return Compression.GZIP
    if head.startswith(ZSTD_MAGIC):
        return Compression.ZSTD
    return Compression.NONE


def _inflate_head(compression: Compression, head: bytes) -> bytes:
    if compression is Compression.GZIP:
        return zlib.decompressobj(wbits=16 + zlib.MAX_WBITS).decompress(head, SNIFF_SIZE)
    return zstandard.ZstdDecompressor().decompressobj().decompress(head)[:SNIFF_SIZE]


def sniff(head: bytes) -> FileType:
    """Classify the first bytes of a stream.

    Compressed heads are inflated and classified recursively; a compressed
    head that does not inflate cleanly is treated as plain CSV text.
    """
    if head.startswith(OLE2_MAGIC):
        return FileType(Container.XLS)
    if head.startswith(ZIP_MAGIC):
        return FileType(Container.XLSX)
    compression = _compression_of(head)
    if compression is Compression.NONE:
        return FileType(Container.CSV)
    try:
        inner = _inflate_head(compression, head)
    except (zlib.error, zstandard.ZstdError) as err:
        logger.info("%s magic but does not decompress (%s), treating as csv", compression.value, err)
        return FileType(Container.CSV)
    return FileType(sniff(inner).container, compression)


def detect_reader_type(stream: BinaryIO, file_name: str = "") -> tuple[FileType, BinaryIO]:
    """Detect the type of ``stream``.

    Args:
        stream: Readable binary stream, need not be seekable
        file_name: Name used in log messages only

    Returns:
        The detected FileType and a stream positioned at the very first byte
    """
    head = _read_upto(stream, SNIFF_SIZE)
    file_type = sniff(head)
    logger.debug("detected file=%s type=%s", file_name or "-", file_type)
    return file_type, io.BufferedReader(ReplayReader(head, stream))


def _decompressor(compression: Compression, stream: BinaryIO) -> BinaryIO:
    if compression is Compression.GZIP:
        return gzip.GzipFile(fileobj=stream, mode="rb")  # type: ignore[return-value]
    return zstandard.ZstdDecompressor().stream_reader(stream, read_across_frames=True)  # type: ignore[return-value]


def decompress_stream(stream: BinaryIO, file_name: str = "") -> tuple[FileType, BinaryIO]:
    """Strip every compression layer from ``stream``.

    Returns:
        The FileType of the outer stream and the fully decompressed stream
    """
    outer, stream = detect_reader_type(stream, file_name)
    file_type = outer
    while file_type.compression is not Compression.NONE:
        stream = _decompressor(file_type.compression, stream)
        file_type, stream = detect_reader_type(stream, file_name)
    return outer, stream

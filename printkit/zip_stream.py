import logging
import time
import zipfile

logger = logging.getLogger("print-kit.zip")

MANIFEST_NAME = "manifest.txt"


class _ChunkSink:
    """Write-only file object collecting what zipfile writes."""

    def __init__(self):
        self._chunks: list[bytes] = []
        self.written = 0

    def write(self, data) -> int:
        if data:
            self._chunks.append(bytes(data))
            self.written += len(data)
        return len(data)

    def flush(self) -> None:
        pass

    def drain(self) -> bytes:
        data = b"".join(self._chunks)
        self._chunks.clear()
        return data


def format_filename(
    basename: str,
    aspect_ratio: str,
    size_label: str,
    dpi: int = 300
) -> str:
    return f"{basename}_{aspect_ratio}_{size_label}_{dpi}dpi.jpg"


def entry_path(
    basename: str,
    aspect_ratio: str,
    size_label: str,
    dpi: int = 300
) -> str:
    """Archive path: one directory per aspect ratio."""
    return f"{aspect_ratio}/{format_filename(basename, aspect_ratio, size_label, dpi)}"


class ArchiveStreamer:
    """
    Append-only ZIP writer that hands back compressed bytes as it goes.

    Every add_entry() returns the bytes produced for that entry, so a
    consumer can forward them before later entries exist. finalize()
    writes the manifest as the last entry plus the central directory.
    The output is written without seeking, so entries use data
    descriptors.
    """

    def __init__(self, compresslevel: int = 9):
        self.compresslevel = compresslevel
        self._sink = _ChunkSink()
        self._zip = zipfile.ZipFile(
            self._sink,
            mode="w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=compresslevel,
        )
        self._paths: list[str] = []
        self._payload_bytes = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def entry_count(self) -> int:
        return len(self._paths)

    @property
    def total_bytes(self) -> int:
        """Uncompressed bytes added so far."""
        return self._payload_bytes

    @property
    def bytes_written(self) -> int:
        return self._sink.written

    def add_entry(self, path: str, data: bytes) -> bytes:
        if self._closed:
            raise RuntimeError("Archive already finalized")
        info = zipfile.ZipInfo(path, date_time=time.localtime()[:6])
        info.compress_type = zipfile.ZIP_DEFLATED
        info.external_attr = 0o644 << 16
        self._zip.writestr(info, data, compresslevel=self.compresslevel)
        self._paths.append(path)
        self._payload_bytes += len(data)
        logger.debug(f"Added {path} ({len(data)} bytes)")
        return self._sink.drain()

    def finalize(self, manifest: str) -> bytes:
        """Write the manifest last, close the archive and return the tail."""
        if self._closed:
            raise RuntimeError("Archive already finalized")
        tail = self.add_entry(MANIFEST_NAME, manifest.encode("utf-8"))
        self._zip.close()
        self._closed = True
        logger.info(
            f"Archive finalized: {self.entry_count} entries, "
            f"{self.bytes_written} bytes"
        )
        return tail + self._sink.drain()

    def abort(self) -> None:
        """Stop accepting entries without writing a central directory."""
        self._closed = True
        self._sink.drain()

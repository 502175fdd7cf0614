"""
Helpers for proxying object bodies to the browser: byte ranges, download
headers and on-demand ZIP bundles for multi-part books.
"""

from __future__ import annotations

import re
import tempfile
import zipfile
from typing import IO, TYPE_CHECKING, Iterable, Iterator, Optional
from urllib.parse import quote

from fastapi.responses import StreamingResponse

if TYPE_CHECKING:
    from bookstore.storage import ObjectStream

_RANGE_PATTERN = re.compile(r"^\s*bytes\s*=\s*(\d*)\s*-\s*(\d*)\s*$", re.IGNORECASE)

ZIP_SPOOL_BYTES = 32 * 1024 * 1024
FILE_CHUNK_SIZE = 64 * 1024

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "Surrogate-Control": "no-store",
}


class RangeNotSatisfiable(Exception):
    """Raised for a byte range that falls outside the object."""

    def __init__(self, message: str = "Requested range not satisfiable", size: Optional[int] = None):
        super().__init__(message)
        self.size = size


def parse_range(header: Optional[str], size: int) -> Optional[tuple[int, int]]:
    """
    Parse a single ``bytes=`` range against an object of ``size`` bytes.

    Returns inclusive ``(start, end)`` offsets, or None when the header is
    absent or not a single byte range (the caller then serves the full body).
    Raises RangeNotSatisfiable when the range cannot be served.
    """
    if not header:
        return None
    match = _RANGE_PATTERN.match(header)
    if not match:
        return None
    first, last = match.groups()
    if not first and not last:
        return None

    if not first:
        # Suffix range: the final N bytes.
        length = int(last)
        if length == 0 or size == 0:
            raise RangeNotSatisfiable(size=size)
        return max(size - length, 0), size - 1

    start = int(first)
    end = int(last) if last else size - 1
    if start >= size or end < start:
        raise RangeNotSatisfiable(size=size)
    return start, min(end, size - 1)


def content_disposition(filename: str, attachment: bool = True) -> str:
    kind = "attachment" if attachment else "inline"
    return f'{kind}; filename="{quote(filename, safe="")}"'


def proxy_response(
    stream: "ObjectStream",
    *,
    media_type: Optional[str] = None,
    download_name: Optional[str] = None,
    cache_control: Optional[str] = None,
) -> StreamingResponse:
    """Wrap an open object body in a response that mirrors its headers."""
    headers: dict[str, str] = {}
    if stream.content_length is not None:
        headers["Content-Length"] = str(stream.content_length)
    if stream.content_range:
        headers["Content-Range"] = stream.content_range
    if stream.accept_ranges:
        headers["Accept-Ranges"] = stream.accept_ranges
    if stream.last_modified:
        headers["Last-Modified"] = stream.last_modified
    if stream.etag:
        headers["ETag"] = stream.etag
    if download_name:
        headers["Content-Disposition"] = content_disposition(download_name)
    if cache_control:
        headers["Cache-Control"] = cache_control

    status = 206 if stream.content_range else stream.status
    return StreamingResponse(
        stream.body,
        status_code=status,
        media_type=media_type or stream.content_type or "application/octet-stream",
        headers=headers,
    )


def build_parts_zip(entries: Iterable[tuple[str, bytes]]) -> tuple[IO[bytes], int]:
    """
    Write ``(arcname, data)`` pairs into a deflated archive.

    The archive is spooled to disk once it outgrows memory. Returns the
    rewound file and the number of entries written.
    """
    spool = tempfile.SpooledTemporaryFile(max_size=ZIP_SPOOL_BYTES)
    count = 0
    with zipfile.ZipFile(
        spool, mode="w", compression=zipfile.ZIP_DEFLATED, compresslevel=9
    ) as archive:
        for arcname, data in entries:
            archive.writestr(arcname, data)
            count += 1
    spool.seek(0)
    return spool, count


def iter_file(fileobj: IO[bytes], chunk_size: int = FILE_CHUNK_SIZE) -> Iterator[bytes]:
    try:
        while True:
            chunk = fileobj.read(chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        fileobj.close()


def iter_file_range(
    fileobj: IO[bytes], start: int, length: int, chunk_size: int = FILE_CHUNK_SIZE
) -> Iterator[bytes]:
    try:
        fileobj.seek(start)
        remaining = length
        while remaining > 0:
            chunk = fileobj.read(min(chunk_size, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk
    finally:
        fileobj.close()

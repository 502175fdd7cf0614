"""
File provenance resolution.

Book records written over the life of the store reference their files in
several ways: legacy local uploads, B2 file names (sometimes stale or
abbreviated), cached B2 file ids, and absolute Cloudinary URLs. The resolver
walks those in a fixed order and reports where a file was actually found:

1. the exact B2 name,
2. the cached B2 file id,
3. a fuzzy match over the B2 listing (the name's folder, then the bucket),

after which any newly discovered id is cached on the record so the next
lookup hits step 1 or 2.
"""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional

from bookstore.db import BookRecord
from bookstore.storage import ObjectNotFound, ObjectStream, StorageClient, StoredObject
from bookstore.streaming import iter_file, iter_file_range, parse_range

if TYPE_CHECKING:
    from bookstore.catalog import Catalog

logger = logging.getLogger(__name__)

LOCAL_UPLOADS_PREFIX = "/uploads/"
FUZZY_SCAN_LIMIT = 1000


class FileNotResolved(LookupError):
    """No provider holds the referenced file."""


class NoFileAttached(LookupError):
    """The record does not reference a file of the requested kind."""


class PartNotFound(LookupError):
    pass


@dataclass
class FileLocation:
    provider: str  # "local", "b2" or "remote"
    name: Optional[str] = None
    file_id: Optional[str] = None
    url: Optional[str] = None
    path: Optional[Path] = None
    size: Optional[int] = None
    method: str = "exact"  # "local", "exact", "file_id", "fuzzy" or "redirect"

    @property
    def is_redirect(self) -> bool:
        return self.provider == "remote"

    def as_dict(self) -> dict:
        return {
            "provider": self.provider,
            "method": self.method,
            "fileName": self.name,
            "fileId": self.file_id,
            "url": self.url,
            "size": self.size,
        }


def is_url(value: Optional[str]) -> bool:
    return bool(value) and (value.startswith("http://") or value.startswith("https://"))


def is_local_upload(value: Optional[str]) -> bool:
    return bool(value) and value.startswith(LOCAL_UPLOADS_PREFIX)


def is_storage_name(value: Optional[str]) -> bool:
    return bool(value) and not value.startswith("/") and not is_url(value)


def best_match(name: str, candidates: Iterable[StoredObject]) -> Optional[StoredObject]:
    """Pick the listed object matching ``name``; exact names beat containment."""
    contained = None
    for candidate in candidates:
        if candidate.name == name:
            return candidate
        if contained is None and (name in candidate.name or candidate.name in name):
            contained = candidate
    return contained


class FileResolver:
    def __init__(
        self,
        storage: StorageClient,
        catalog: Optional["Catalog"] = None,
        uploads_dir: str | Path = "uploads",
    ):
        self.storage = storage
        self.catalog = catalog
        self.uploads_dir = Path(uploads_dir)

    def locate(self, name: str, file_id: Optional[str] = None) -> FileLocation:
        found = self.storage.find_object(name)
        if found:
            return self._b2_location(found, "exact")

        if file_id:
            found = self.storage.find_version(name, file_id)
            if found:
                logger.info("Resolved %s by cached file id %s", name, file_id)
                return self._b2_location(found, "file_id")

        found = self._fuzzy_lookup(name)
        if found:
            logger.warning("Resolved %s by fuzzy match to %s", name, found.name)
            return self._b2_location(found, "fuzzy")

        raise FileNotResolved(name)

    def _fuzzy_lookup(self, name: str) -> Optional[StoredObject]:
        prefixes = [""]
        if "/" in name:
            prefixes.insert(0, name.rsplit("/", 1)[0] + "/")
        for prefix in prefixes:
            match = best_match(name, self.storage.list_objects(prefix, limit=FUZZY_SCAN_LIMIT))
            if match:
                return match
        return None

    @staticmethod
    def _b2_location(found: StoredObject, method: str) -> FileLocation:
        return FileLocation(
            provider="b2",
            name=found.name,
            file_id=found.file_id,
            size=found.size,
            method=method,
        )

    def _local(self, value: str) -> FileLocation:
        relative = value[len(LOCAL_UPLOADS_PREFIX):]
        root = self.uploads_dir.resolve()
        path = (root / relative).resolve()
        if not path.is_relative_to(root) or not path.is_file():
            raise FileNotResolved(value)
        return FileLocation(
            provider="local", name=value, path=path, size=path.stat().st_size, method="local"
        )

    def _resolve_reference(self, value: str, file_id: Optional[str]) -> FileLocation:
        if is_local_upload(value):
            return self._local(value)
        if is_url(value):
            return FileLocation(provider="remote", url=value, method="redirect")
        return self.locate(value, file_id)

    def resolve_pdf(self, book: BookRecord) -> FileLocation:
        name = book.pdf_file_name
        if book.has_parts or not name:
            raise NoFileAttached(book.id)
        location = self._resolve_reference(name, book.b2_file_id)
        if self.catalog is not None and location.method in ("exact", "file_id", "fuzzy"):
            self.catalog.remember_file_id(book, location)
        return location

    def resolve_part(self, book: BookRecord, part_number: int) -> FileLocation:
        if not book.has_parts:
            raise NoFileAttached(book.id)
        part = book.get_part(part_number)
        if part is None:
            raise PartNotFound(part_number)
        if not part.pdf_file_name:
            raise NoFileAttached(f"{book.id} part {part_number}")
        location = self._resolve_reference(part.pdf_file_name, part.b2_file_id)
        if self.catalog is not None and location.method in ("exact", "file_id", "fuzzy"):
            self.catalog.remember_file_id(book, location, part_number=part_number)
        return location

    def resolve_cover(self, book: BookRecord) -> FileLocation:
        url = book.cloudinary_cover_url or book.cover_image
        if is_url(url):
            return FileLocation(provider="remote", url=url, method="redirect")
        name = book.b2_cover_file_name or (
            book.cover_image if is_storage_name(book.cover_image) else None
        )
        if name:
            return self.locate(name)
        if is_local_upload(book.cover_image):
            return self._local(book.cover_image)
        raise NoFileAttached(book.id)

    def stream(self, location: FileLocation, byte_range: Optional[str] = None) -> ObjectStream:
        if location.provider == "b2":
            file_id = location.file_id if location.method == "file_id" else None
            try:
                return self.storage.open_stream(
                    location.name, byte_range=byte_range, file_id=file_id
                )
            except ObjectNotFound:
                found = self._refind(location, file_id)
                return self.storage.open_stream(
                    found.name, byte_range=byte_range, file_id=found.file_id
                )
        if location.provider == "local":
            return self._stream_local(location.path, byte_range)
        raise ValueError(f"{location.provider} locations are redirected, not streamed")

    def read_bytes(self, location: FileLocation) -> bytes:
        if location.provider == "local":
            return location.path.read_bytes()
        if location.provider == "b2":
            file_id = location.file_id if location.method == "file_id" else None
            try:
                return self.storage.get_bytes(location.name, file_id=file_id)
            except ObjectNotFound:
                found = self._refind(location, file_id)
                return self.storage.get_bytes(found.name, file_id=found.file_id)
        raise ValueError(f"{location.provider} locations are redirected, not read")

    def _refind(self, location: FileLocation, tried_file_id: Optional[str]) -> StoredObject:
        """Look a vanished object up again by its file id, wherever it now lives."""
        if not location.file_id or tried_file_id:
            raise ObjectNotFound(location.name)
        logger.warning("Retrying %s by file id %s", location.name, location.file_id)
        found = self.storage.find_version(location.name, location.file_id)
        if found is None:
            raise ObjectNotFound(location.name)
        return found

    @staticmethod
    def _stream_local(path: Path, byte_range: Optional[str]) -> ObjectStream:
        size = path.stat().st_size
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        bounds = parse_range(byte_range, size)
        handle = path.open("rb")
        if bounds is None:
            return ObjectStream(
                body=iter_file(handle), content_length=size, content_type=content_type
            )
        start, end = bounds
        return ObjectStream(
            body=iter_file_range(handle, start, end - start + 1),
            status=206,
            content_length=end - start + 1,
            content_type=content_type,
            content_range=f"bytes {start}-{end}/{size}",
        )

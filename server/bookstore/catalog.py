"""
Book catalog service.

The database is the primary store. Every save mirrors the whole catalog to a
JSON snapshot in B2 so an ephemeral host can recover it on boot, and as a last
resort the catalog can be rebuilt from Cloudinary cover contexts plus the PDFs
found under each book's B2 prefix.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Optional

from bookstore.config import Settings
from bookstore.db import BookRecord, DbClient, PdfPart
from bookstore.images import ImageHost, ImageHostError
from bookstore.storage import ObjectNotFound, StorageClient, StorageError, StoredObject

if TYPE_CHECKING:
    from bookstore.resolver import FileLocation

logger = logging.getLogger(__name__)

BOOKS_PREFIX = "books"
_PART_NUMBER = re.compile(r"^part-(\d+)-")


class BookNotFound(LookupError):
    pass


def book_prefix(book_id: str) -> str:
    return f"{BOOKS_PREFIX}/{book_id}/"


def part_order(stored: StoredObject) -> tuple:
    """Sort key for part files: the number in ``part-<n>-`` first, then the name."""
    match = _PART_NUMBER.match(stored.name.rsplit("/", 1)[-1])
    if match:
        return (0, int(match.group(1)), stored.name)
    return (1, 0, stored.name)


class Catalog:
    def __init__(
        self,
        db: DbClient,
        storage: StorageClient,
        images: Optional[ImageHost],
        settings: Settings,
    ):
        self.db = db
        self.storage = storage
        self.images = images
        self.settings = settings
        self._restore_attempted = False

    def list_books(self) -> list[BookRecord]:
        books = self.db.list_books()
        if books or self._restore_attempted:
            return books

        self._restore_attempted = True
        restored = self.load_snapshot()
        if restored:
            logger.info("Restored %d books from snapshot %s", len(restored), self.snapshot_path)
        elif self.images is not None and self.settings.has_cloudinary_credentials:
            restored = self.rebuild_from_providers()
            if restored:
                logger.info("Rebuilt %d books from Cloudinary and B2", len(restored))
        if restored:
            self.db.replace_books(restored)
        return self.db.list_books()

    def get_book(self, book_id: str) -> Optional[BookRecord]:
        book = self.db.get_book(book_id)
        if book is None and not self._restore_attempted:
            self.list_books()
            book = self.db.get_book(book_id)
        return book

    def require_book(self, book_id: str) -> BookRecord:
        book = self.get_book(book_id)
        if book is None:
            raise BookNotFound(book_id)
        return book

    def save_book(self, book: BookRecord) -> bool:
        """Persist a book and mirror the catalog. Returns whether the mirror succeeded."""
        self.db.save_book(book)
        return self.write_snapshot()

    def delete_book(self, book_id: str) -> bool:
        deleted = self.db.delete_book(book_id)
        if deleted:
            self.write_snapshot()
        return deleted

    def remember_file_id(
        self,
        book: BookRecord,
        location: "FileLocation",
        part_number: Optional[int] = None,
    ) -> None:
        """Cache a file id (and corrected name) discovered during resolution."""
        if location.provider != "b2" or not location.file_id:
            return
        if part_number is not None:
            part = book.get_part(part_number)
            if part is None:
                return
            if part.b2_file_id == location.file_id and part.b2_file_name == location.name:
                return
            part.b2_file_id = location.file_id
            part.b2_file_name = location.name
        else:
            if book.b2_file_id == location.file_id and book.pdf_file_name == location.name:
                return
            book.b2_file_id = location.file_id
            book.b2_file_name = location.name
        logger.info(
            "Caching B2 file id %s (%s) for book %s", location.file_id, location.name, book.id
        )
        self.save_book(book)

    @property
    def snapshot_path(self) -> str:
        return self.settings.catalog_snapshot_path

    def write_snapshot(self) -> bool:
        books = [book.as_dict() for book in self.db.list_books()]
        try:
            self.storage.upload_json(self.snapshot_path, books)
        except StorageError as exc:
            logger.error("Failed to mirror %d books to %s: %s", len(books), self.snapshot_path, exc)
            return False
        logger.debug("Mirrored %d books to %s", len(books), self.snapshot_path)
        return True

    def load_snapshot(self) -> Optional[list[BookRecord]]:
        try:
            raw = self.storage.get_bytes(self.snapshot_path)
        except ObjectNotFound:
            return None
        except StorageError as exc:
            logger.warning("Failed to download %s: %s", self.snapshot_path, exc)
            return None
        try:
            payload = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            logger.warning("Snapshot %s is corrupted: %s", self.snapshot_path, exc)
            return None
        if not isinstance(payload, list):
            logger.warning("Snapshot %s is not a list", self.snapshot_path)
            return None
        return [BookRecord.from_dict(item) for item in payload if isinstance(item, dict) and item.get("id")]

    def rebuild_from_providers(self) -> list[BookRecord]:
        if self.images is None:
            return []
        cover_prefix = f"{self.settings.covers_folder}/cover-"
        try:
            covers = self.images.list_resources(cover_prefix)
        except ImageHostError as exc:
            logger.error("Error building book list from providers: %s", exc)
            return []

        books: list[BookRecord] = []
        for resource in covers:
            last_segment = resource.public_id.rsplit("/", 1)[-1]
            book_id = last_segment[len("cover-"):] if last_segment.startswith("cover-") else last_segment
            ctx = resource.context
            book = BookRecord(
                id=book_id,
                title=ctx.get("title", ""),
                author=ctx.get("author", ""),
                description=ctx.get("description", ""),
                category=ctx.get("category") or "General",
                reading_time=ctx.get("readingTime") or "Flexible",
                rating=_to_number(ctx.get("rating")),
                is_trending=ctx.get("isTrending") in ("true", True),
                cover_image=resource.secure_url,
                cloudinary_cover_url=resource.secure_url,
            )
            if resource.created_at:
                book.created_at = resource.created_at
                book.updated_at = resource.created_at
            self._attach_stored_pdfs(book)
            books.append(book)
        return books

    def _attach_stored_pdfs(self, book: BookRecord) -> None:
        try:
            files = self.storage.list_objects(book_prefix(book.id))
        except StorageError as exc:
            logger.warning("Failed to list PDFs on B2 for %s: %s", book.id, exc)
            return
        pdfs = [f for f in files if f.name.lower().endswith(".pdf")]
        part_files = sorted((f for f in pdfs if "/parts/" in f.name), key=part_order)
        if part_files:
            book.pdf_parts = [
                PdfPart(
                    part_number=index,
                    b2_file_name=f.name,
                    file_name=f.name,
                    b2_file_id=f.file_id,
                )
                for index, f in enumerate(part_files, start=1)
            ]
        elif pdfs:
            book.b2_file_name = pdfs[0].name
            book.file_name = pdfs[0].name
            book.b2_file_id = pdfs[0].file_id

    def snapshot_status(self) -> dict:
        status = {
            "database": {"count": len(self.db.list_books())},
            "backblaze": {
                "configured": self.settings.has_b2_credentials,
                "path": self.snapshot_path,
                "exists": False,
                "count": 0,
                "error": None,
            },
        }
        snapshot = self.load_snapshot()
        if snapshot is not None:
            status["backblaze"]["exists"] = True
            status["backblaze"]["count"] = len(snapshot)
        return status


def _to_number(value) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    return int(number) if number.is_integer() else number

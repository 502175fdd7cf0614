import tempfile
import unittest
from pathlib import Path

from bookstore.catalog import Catalog
from bookstore.db import BookRecord, InMemoryDbClient, PdfPart
from bookstore.images import InMemoryImageHost
from bookstore.resolver import (
    FileLocation,
    FileNotResolved,
    FileResolver,
    NoFileAttached,
    PartNotFound,
    best_match,
)
from bookstore.storage import InMemoryStorageClient, ObjectNotFound, StoredObject
from bookstore.streaming import RangeNotSatisfiable
from bookstore.tests.support import make_settings


class BestMatchTests(unittest.TestCase):
    def test_exact_name_beats_earlier_containment(self):
        candidates = [StoredObject("books/a/dune.pdf.bak"), StoredObject("books/a/dune.pdf")]
        self.assertEqual(best_match("books/a/dune.pdf", candidates).name, "books/a/dune.pdf")

    def test_containment_either_direction(self):
        self.assertEqual(
            best_match("dune.pdf", [StoredObject("books/a/dune.pdf")]).name, "books/a/dune.pdf"
        )
        self.assertEqual(
            best_match("books/a/dune.pdf", [StoredObject("dune.pdf")]).name, "dune.pdf"
        )

    def test_no_match(self):
        self.assertIsNone(best_match("dune.pdf", [StoredObject("books/a/emma.pdf")]))


class LocateTests(unittest.TestCase):
    def setUp(self):
        self.storage = InMemoryStorageClient()
        self.resolver = FileResolver(self.storage)

    def test_exact(self):
        stored = self.storage.upload_bytes("books/a/dune.pdf", b"x")
        location = self.resolver.locate("books/a/dune.pdf")
        self.assertEqual(location.method, "exact")
        self.assertEqual(location.file_id, stored.file_id)

    def test_file_id(self):
        stored = self.storage.upload_bytes("books/a/renamed.pdf", b"x")
        location = self.resolver.locate("books/a/dune.pdf", stored.file_id)
        self.assertEqual(location.method, "file_id")
        self.assertEqual(location.name, "books/a/renamed.pdf")

    def test_fuzzy_prefers_same_folder(self):
        self.storage.upload_bytes("archive/books/a/dune.pdf", b"old")
        self.storage.upload_bytes("books/a/dune-v2.pdf", b"new")
        location = self.resolver.locate("books/a/dune")
        self.assertEqual(location.method, "fuzzy")
        self.assertEqual(location.name, "books/a/dune-v2.pdf")

    def test_fuzzy_falls_back_to_whole_bucket(self):
        self.storage.upload_bytes("archive/books/a/dune.pdf", b"old")
        location = self.resolver.locate("books/a/dune.pdf")
        self.assertEqual(location.name, "archive/books/a/dune.pdf")

    def test_not_resolved(self):
        with self.assertRaises(FileNotResolved):
            self.resolver.locate("books/a/dune.pdf", "missing-id")


class LocalUploadTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        root = Path(self.tmp.name)
        (root / "uploads").mkdir()
        (root / "uploads" / "dune.pdf").write_bytes(b"0123456789")
        (root / "secret.txt").write_text("nope")
        self.resolver = FileResolver(InMemoryStorageClient(), uploads_dir=root / "uploads")

    def test_local_file_resolves_and_streams_range(self):
        book = BookRecord(id="b", title="t", author="a", file_name="/uploads/dune.pdf")
        location = self.resolver.resolve_pdf(book)
        self.assertEqual(location.provider, "local")
        self.assertEqual(location.size, 10)

        stream = self.resolver.stream(location, "bytes=2-4")
        self.assertEqual(stream.read_all(), b"234")
        self.assertEqual(stream.content_range, "bytes 2-4/10")
        self.assertEqual(stream.content_type, "application/pdf")

    def test_local_range_out_of_bounds(self):
        book = BookRecord(id="b", title="t", author="a", file_name="/uploads/dune.pdf")
        location = self.resolver.resolve_pdf(book)
        with self.assertRaises(RangeNotSatisfiable):
            self.resolver.stream(location, "bytes=50-")

    def test_path_traversal_is_rejected(self):
        book = BookRecord(id="b", title="t", author="a", file_name="/uploads/../secret.txt")
        with self.assertRaises(FileNotResolved):
            self.resolver.resolve_pdf(book)


class BookResolutionTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.storage = InMemoryStorageClient()
        self.catalog = Catalog(self.db, self.storage, InMemoryImageHost(), make_settings())
        self.resolver = FileResolver(self.storage, self.catalog)

    def test_resolve_pdf_caches_discovered_id(self):
        stored = self.storage.upload_bytes("books/b/book-1-dune.pdf", b"x")
        book = BookRecord(id="b", title="t", author="a", b2_file_name="book-1-dune.pdf")
        self.db.save_book(book)

        self.resolver.resolve_pdf(book)
        saved = self.db.get_book("b")
        self.assertEqual(saved.b2_file_name, "books/b/book-1-dune.pdf")
        self.assertEqual(saved.b2_file_id, stored.file_id)

    def test_resolve_pdf_caches_name_found_by_file_id(self):
        stored = self.storage.upload_bytes("books/b/renamed.pdf", b"x")
        book = BookRecord(
            id="b", title="t", author="a", b2_file_name="books/b/dune.pdf", b2_file_id=stored.file_id
        )
        self.db.save_book(book)

        location = self.resolver.resolve_pdf(book)
        self.assertEqual(location.method, "file_id")
        saved = self.db.get_book("b")
        self.assertEqual(saved.b2_file_name, "books/b/renamed.pdf")
        self.assertEqual(self.resolver.resolve_pdf(saved).method, "exact")

    def test_resolve_part_caches_name_found_by_file_id(self):
        stored = self.storage.upload_bytes("books/b/parts/part-1-2-vol.pdf", b"x")
        book = BookRecord(
            id="b",
            title="t",
            author="a",
            pdf_parts=[PdfPart(1, "books/b/parts/old.pdf", b2_file_id=stored.file_id)],
        )
        self.db.save_book(book)

        self.assertEqual(self.resolver.resolve_part(book, 1).method, "file_id")
        self.assertEqual(
            self.db.get_book("b").get_part(1).b2_file_name, "books/b/parts/part-1-2-vol.pdf"
        )

    def test_resolve_pdf_requires_single_file(self):
        with self.assertRaises(NoFileAttached):
            self.resolver.resolve_pdf(BookRecord(id="b", title="t", author="a"))
        split = BookRecord(
            id="b", title="t", author="a", pdf_parts=[PdfPart(1, "books/b/parts/p1.pdf")]
        )
        with self.assertRaises(NoFileAttached):
            self.resolver.resolve_pdf(split)

    def test_resolve_part_caches_on_part(self):
        stored = self.storage.upload_bytes("books/b/parts/part-2-1-vol.pdf", b"x")
        book = BookRecord(
            id="b",
            title="t",
            author="a",
            pdf_parts=[PdfPart(1, "books/b/parts/p1.pdf"), PdfPart(2, "books/b/parts/part-2-1-vol.pdf")],
        )
        self.db.save_book(book)

        location = self.resolver.resolve_part(book, 2)
        self.assertEqual(location.method, "exact")
        self.assertEqual(self.db.get_book("b").get_part(2).b2_file_id, stored.file_id)
        with self.assertRaises(PartNotFound):
            self.resolver.resolve_part(book, 3)

    def test_resolve_cover_order(self):
        book = BookRecord(
            id="b",
            title="t",
            author="a",
            cover_image="covers/b.jpg",
            cloudinary_cover_url="https://img.test/b.webp",
        )
        self.assertEqual(self.resolver.resolve_cover(book).url, "https://img.test/b.webp")

        book.cloudinary_cover_url = None
        self.storage.upload_bytes("covers/b.jpg", b"jpg", "image/jpeg")
        self.assertEqual(self.resolver.resolve_cover(book).name, "covers/b.jpg")

        book.cover_image = None
        with self.assertRaises(NoFileAttached):
            self.resolver.resolve_cover(book)

    def test_stream_retries_by_file_id(self):
        stored = self.storage.upload_bytes("books/b/current.pdf", b"body")
        location = FileLocation(
            provider="b2", name="books/b/stale.pdf", file_id=stored.file_id, method="exact"
        )
        self.assertEqual(self.resolver.stream(location).read_all(), b"body")

    def test_read_bytes_retries_by_file_id(self):
        stored = self.storage.upload_bytes("books/b/current.pdf", b"body")
        location = FileLocation(
            provider="b2", name="books/b/stale.pdf", file_id=stored.file_id, method="fuzzy"
        )
        self.assertEqual(self.resolver.read_bytes(location), b"body")

    def test_stream_does_not_retry_without_file_id(self):
        location = FileLocation(provider="b2", name="books/b/stale.pdf", method="exact")
        with self.assertRaises(ObjectNotFound):
            self.resolver.stream(location)


if __name__ == "__main__":
    unittest.main()

import json
import unittest
from unittest import mock

from bookstore.catalog import Catalog
from bookstore.db import BookRecord, InMemoryDbClient, PdfPart
from bookstore.images import InMemoryImageHost, cover_context
from bookstore.resolver import FileLocation
from bookstore.storage import InMemoryStorageClient, StorageError
from bookstore.tests.support import make_settings

CLOUDINARY_SETTINGS = {
    "cloudinary_cloud_name": "demo",
    "cloudinary_api_key": "key",
    "cloudinary_api_secret": "secret",
}


class CatalogTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.storage = InMemoryStorageClient()
        self.images = InMemoryImageHost()
        self.catalog = Catalog(
            self.db, self.storage, self.images, make_settings(**CLOUDINARY_SETTINGS)
        )

    def test_save_mirrors_snapshot(self):
        self.assertTrue(self.catalog.save_book(BookRecord(id="b1", title="Dune", author="Herbert")))
        snapshot = json.loads(self.storage.get_bytes("data/books.json"))
        self.assertEqual(snapshot[0]["id"], "b1")
        self.assertEqual(snapshot[0]["readingTime"], "Flexible")

    def test_snapshot_failure_keeps_database_write(self):
        with mock.patch.object(self.storage, "upload_json", side_effect=StorageError("down")):
            mirrored = self.catalog.save_book(BookRecord(id="b1", title="Dune", author="Herbert"))
        self.assertFalse(mirrored)
        self.assertIsNotNone(self.db.get_book("b1"))

    def test_restore_from_snapshot_happens_once(self):
        self.storage.upload_json(
            "data/books.json",
            [{"id": "b1", "title": "Dune", "author": "Herbert", "coverImageUrl": "https://x/c.jpg"}],
        )
        books = self.catalog.list_books()
        self.assertEqual([b.id for b in books], ["b1"])
        self.assertEqual(books[0].cover_image, "https://x/c.jpg")

        self.db.reset()
        self.assertEqual(self.catalog.list_books(), [])

    def test_get_book_triggers_restore(self):
        self.storage.upload_json("data/books.json", [{"id": "b1", "title": "Dune", "author": "H"}])
        self.assertEqual(self.catalog.get_book("b1").title, "Dune")

    def test_corrupted_snapshot_is_ignored(self):
        self.storage.upload_bytes("data/books.json", b"{not json", "application/json")
        self.assertIsNone(self.catalog.load_snapshot())
        self.storage.upload_json("data/books.json", {"id": "b1"})
        self.assertIsNone(self.catalog.load_snapshot())

    def test_rebuild_from_cloudinary_and_b2(self):
        split = BookRecord(id="b1", title="Dune", author="Herbert", rating=4.5, is_trending=True)
        self.images.upload_image(
            b"img", folder="bookstore/book-covers", public_id="cover-b1",
            context=cover_context(split), cover=True,
        )
        single = BookRecord(id="b2", title="Emma", author="Austen")
        self.images.upload_image(
            b"img", folder="bookstore/book-covers", public_id="cover-b2",
            context=cover_context(single), cover=True,
        )
        self.storage.upload_bytes("books/b1/parts/part-2-1-vol.pdf", b"2")
        self.storage.upload_bytes("books/b1/parts/part-1-1-vol.pdf", b"1")
        self.storage.upload_bytes("books/b2/book-1-emma.pdf", b"e")

        books = {b.id: b for b in self.catalog.list_books()}

        self.assertEqual(set(books), {"b1", "b2"})
        self.assertEqual(books["b1"].rating, 4.5)
        self.assertTrue(books["b1"].is_trending)
        self.assertEqual(
            [p.b2_file_name for p in books["b1"].sorted_parts],
            ["books/b1/parts/part-1-1-vol.pdf", "books/b1/parts/part-2-1-vol.pdf"],
        )
        self.assertEqual(books["b2"].b2_file_name, "books/b2/book-1-emma.pdf")
        self.assertTrue(books["b2"].cover_image.endswith("cover-b2.webp"))

    def test_rebuild_orders_parts_by_number(self):
        self.images.upload_image(
            b"img", folder="bookstore/book-covers", public_id="cover-b1",
            context=cover_context(BookRecord(id="b1", title="Saga", author="Vaughan")), cover=True,
        )
        for number in (10, 2, 1):
            self.storage.upload_bytes(f"books/b1/parts/part-{number}-5-saga.pdf", str(number).encode())

        (book,) = self.catalog.list_books()

        self.assertEqual(
            [p.b2_file_name for p in book.sorted_parts],
            [
                "books/b1/parts/part-1-5-saga.pdf",
                "books/b1/parts/part-2-5-saga.pdf",
                "books/b1/parts/part-10-5-saga.pdf",
            ],
        )
        self.assertEqual([p.part_number for p in book.sorted_parts], [1, 2, 3])

    def test_rebuild_skipped_without_cloudinary_credentials(self):
        catalog = Catalog(self.db, self.storage, self.images, make_settings())
        self.images.upload_image(b"img", folder="bookstore/book-covers", public_id="cover-b1")
        self.assertEqual(catalog.list_books(), [])

    def test_remember_file_id_updates_part(self):
        book = BookRecord(
            id="b1", title="Dune", author="H", pdf_parts=[PdfPart(1, "old.pdf")]
        )
        self.db.save_book(book)
        location = FileLocation(provider="b2", name="books/b1/parts/new.pdf", file_id="v9", method="fuzzy")

        self.catalog.remember_file_id(book, location, part_number=1)

        part = self.db.get_book("b1").get_part(1)
        self.assertEqual((part.b2_file_name, part.b2_file_id), ("books/b1/parts/new.pdf", "v9"))

    def test_delete_book_refreshes_snapshot(self):
        self.catalog.save_book(BookRecord(id="b1", title="Dune", author="H"))
        self.assertTrue(self.catalog.delete_book("b1"))
        self.assertEqual(json.loads(self.storage.get_bytes("data/books.json")), [])
        self.assertFalse(self.catalog.delete_book("b1"))

    def test_snapshot_status(self):
        self.catalog.save_book(BookRecord(id="b1", title="Dune", author="H"))
        status = self.catalog.snapshot_status()
        self.assertEqual(status["database"]["count"], 1)
        self.assertTrue(status["backblaze"]["exists"])
        self.assertEqual(status["backblaze"]["count"], 1)


if __name__ == "__main__":
    unittest.main()

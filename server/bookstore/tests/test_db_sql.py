import unittest

from bookstore.db import BlogRecord, BookRecord, PdfPart, SqlDbClient


class SqlDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the SQL client logic.
    """

    def setUp(self):
        self.db = SqlDbClient("sqlite+pysqlite:///:memory:")

    def test_save_and_get_book(self):
        book = BookRecord(
            id="b1",
            title="Dune",
            author="Herbert",
            pdf_parts=[PdfPart(1, "books/b1/parts/p1.pdf", b2_file_id="v1")],
            storage={"pdf": {"provider": "backblaze", "path": ["books/b1/parts/p1.pdf"]}},
        )
        self.db.save_book(book)

        fetched = self.db.get_book("b1")
        self.assertEqual(fetched.title, "Dune")
        self.assertEqual(fetched.get_part(1).b2_file_id, "v1")
        self.assertEqual(fetched.storage["pdf"]["provider"], "backblaze")
        self.assertIsNone(self.db.get_book("missing"))

    def test_update_keeps_insertion_order(self):
        self.db.save_book(BookRecord(id="first", title="A", author="x"))
        self.db.save_book(BookRecord(id="second", title="B", author="x"))
        self.db.save_book(BookRecord(id="first", title="A2", author="x"))

        books = self.db.list_books()
        self.assertEqual([b.id for b in books], ["first", "second"])
        self.assertEqual(books[0].title, "A2")

    def test_replace_books(self):
        self.db.save_book(BookRecord(id="old", title="Old", author="x"))
        self.db.replace_books(
            [BookRecord(id="r1", title="One", author="x"), BookRecord(id="r2", title="Two", author="x")]
        )
        self.assertEqual([b.id for b in self.db.list_books()], ["r1", "r2"])

    def test_delete_book(self):
        self.db.save_book(BookRecord(id="b1", title="Dune", author="x"))
        self.assertTrue(self.db.delete_book("b1"))
        self.assertFalse(self.db.delete_book("b1"))

    def test_blogs(self):
        self.db.save_blog(BlogRecord(id="p1", title="Hello", date="2025-01-01"))
        self.db.save_blog(BlogRecord(id="p1", title="Hello again", date="2025-01-01"))
        self.assertEqual([b.title for b in self.db.list_blogs()], ["Hello again"])
        self.assertEqual(self.db.get_blog("p1").date, "2025-01-01")
        self.assertTrue(self.db.delete_blog("p1"))
        self.assertIsNone(self.db.get_blog("p1"))


if __name__ == "__main__":
    unittest.main()

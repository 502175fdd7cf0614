import unittest

from bookstore.tests.support import make_pdf
from bookstore.uploads import (
    InvalidPdf,
    inspect_pdf,
    new_record_id,
    part_pdf_path,
    sanitize_filename,
    single_pdf_path,
)


class UploadHelperTests(unittest.TestCase):
    def test_sanitize_filename(self):
        self.assertEqual(sanitize_filename("Dune (1965) é.pdf"), "Dune__1965___.pdf")

    def test_object_names(self):
        self.assertRegex(single_pdf_path("b1", "My Book.PDF"), r"^books/b1/book-\d+-My_Book\.pdf$")
        self.assertRegex(part_pdf_path("b1", 3, "vol.pdf"), r"^books/b1/parts/part-3-\d+-vol\.pdf$")
        self.assertRegex(single_pdf_path("b1", "../../etc/passwd"), r"^books/b1/book-\d+-passwd\.pdf$")

    def test_record_ids_are_unique(self):
        ids = {new_record_id("book") for _ in range(50)}
        self.assertEqual(len(ids), 50)
        self.assertTrue(all(i.startswith("book_") for i in ids))

    def test_inspect_pdf(self):
        self.assertEqual(inspect_pdf(make_pdf(3)), 3)
        with self.assertRaises(InvalidPdf):
            inspect_pdf(b"")
        with self.assertRaises(InvalidPdf):
            inspect_pdf(b"plain text, not a pdf")


if __name__ == "__main__":
    unittest.main()

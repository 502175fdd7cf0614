import unittest
from unittest import mock

import cloudinary.exceptions

from bookstore.db import BookRecord
from bookstore.images import (
    CloudinaryImageHost,
    ImageHostError,
    InMemoryImageHost,
    context_string,
    cover_context,
)


class CoverContextTests(unittest.TestCase):
    def test_cover_context(self):
        book = BookRecord(id="b1", title="Dune | Part One", author="Herbert", is_trending=True)
        context = cover_context(book)
        self.assertEqual(context["title"], "Dune   Part One")
        self.assertEqual(context["rating"], "0")
        self.assertEqual(context["isTrending"], "true")

    def test_context_string(self):
        self.assertEqual(context_string({"title": "Dune", "rating": 4}), "title=Dune|rating=4")


class InMemoryImageHostTests(unittest.TestCase):
    def test_update_context_of_missing_resource(self):
        with self.assertRaises(ImageHostError):
            InMemoryImageHost().update_context("covers/none", {"title": "x"})


class CloudinaryImageHostTests(unittest.TestCase):
    def setUp(self):
        config = mock.patch("bookstore.images.cloudinary.config")
        config.start()
        self.addCleanup(config.stop)
        self.host = CloudinaryImageHost("demo", "key", "secret", clock=lambda: 1700000000)

    @mock.patch("bookstore.images.cloudinary.uploader.upload")
    def test_cover_upload_uses_synced_timestamp(self, upload):
        upload.return_value = {
            "public_id": "bookstore/book-covers/cover-b1",
            "secure_url": "https://res.cloudinary.com/demo/cover-b1.webp",
        }
        uploaded = self.host.upload_image(
            b"img",
            folder="bookstore/book-covers",
            public_id="cover-b1",
            context={"title": "Dune"},
            cover=True,
        )
        self.assertEqual(uploaded.secure_url, "https://res.cloudinary.com/demo/cover-b1.webp")
        options = upload.call_args.kwargs
        self.assertEqual(options["timestamp"], 1700000000)
        self.assertEqual(options["format"], "webp")
        self.assertTrue(options["overwrite"])
        self.assertEqual(options["context"], {"title": "Dune"})

    @mock.patch("bookstore.images.cloudinary.uploader.upload")
    def test_upload_errors_are_wrapped(self, upload):
        upload.side_effect = cloudinary.exceptions.Error("Stale request")
        with self.assertRaises(ImageHostError):
            self.host.upload_image(b"img", folder="f", public_id="p")

    @mock.patch("bookstore.images.cloudinary.uploader.explicit")
    def test_update_context(self, explicit):
        self.host.update_context("covers/cover-b1", {"title": "Dune", "rating": "4"})
        explicit.assert_called_once_with(
            "covers/cover-b1",
            type="upload",
            resource_type="image",
            context="title=Dune|rating=4",
        )

    @mock.patch("bookstore.images.cloudinary.api.resources")
    def test_list_resources_reads_custom_context(self, resources):
        resources.return_value = {
            "resources": [
                {
                    "public_id": "bookstore/book-covers/cover-b1",
                    "secure_url": "https://res.cloudinary.com/demo/cover-b1.webp",
                    "created_at": "2025-01-01T00:00:00Z",
                    "context": {"custom": {"title": "Dune"}},
                },
                {"public_id": "bookstore/book-covers/cover-b2", "secure_url": "https://x"},
            ]
        }
        listed = self.host.list_resources("bookstore/book-covers/cover-")
        self.assertEqual(listed[0].context, {"title": "Dune"})
        self.assertEqual(listed[1].context, {})
        resources.assert_called_once_with(
            type="upload", prefix="bookstore/book-covers/cover-", max_results=500, context=True
        )


if __name__ == "__main__":
    unittest.main()

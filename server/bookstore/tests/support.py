"""
Shared fixtures for the API tests: in-memory backends wired into the app.
"""

from __future__ import annotations

import io
import unittest

from fastapi.testclient import TestClient
from pypdf import PdfWriter

from bookstore.app import create_app
from bookstore.catalog import Catalog
from bookstore.config import Settings, get_settings
from bookstore.db import BookRecord, InMemoryDbClient, PdfPart
from bookstore.dependencies import get_catalog
from bookstore.images import InMemoryImageHost
from bookstore.storage import InMemoryStorageClient

ADMIN_PASSWORD = "secret"

B2_SETTINGS = {
    "b2_application_key_id": "key-id",
    "b2_application_key": "key",
    "b2_bucket_id": "bucket-id",
    "b2_bucket_name": "bucket",
}


def make_pdf(pages: int = 1) -> bytes:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=72, height=72)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def make_settings(**overrides) -> Settings:
    values = {"use_in_memory_backends": True, "admin_password": ADMIN_PASSWORD}
    values.update(overrides)
    return Settings(_env_file=None, **values)


class ApiTestCase(unittest.TestCase):
    settings_overrides: dict = {}

    def setUp(self):
        self.settings = make_settings(**self.settings_overrides)
        self.db = InMemoryDbClient()
        self.storage = InMemoryStorageClient()
        self.images = InMemoryImageHost()
        self.catalog = Catalog(self.db, self.storage, self.images, self.settings)

        self.app = create_app()
        self.app.dependency_overrides[get_settings] = lambda: self.settings
        self.app.dependency_overrides[get_catalog] = lambda: self.catalog
        self.client = TestClient(self.app)

    def add_book(self, book_id: str = "book_1", **fields) -> BookRecord:
        fields.setdefault("title", "Dune")
        fields.setdefault("author", "Frank Herbert")
        book = BookRecord(id=book_id, **fields)
        self.db.save_book(book)
        return book

    def add_pdf(self, name: str, data: bytes = b"%PDF-1.4 body") -> str:
        return self.storage.upload_bytes(name, data, "application/pdf").file_id

    def add_parts_book(self, book_id: str = "book_parts", count: int = 2) -> BookRecord:
        parts = []
        for number in range(1, count + 1):
            name = f"books/{book_id}/parts/part-{number}-1-vol.pdf"
            self.add_pdf(name, f"part {number} bytes".encode())
            parts.append(PdfPart(part_number=number, b2_file_name=name, file_name=name))
        return self.add_book(book_id, title="Collected", pdf_parts=parts)

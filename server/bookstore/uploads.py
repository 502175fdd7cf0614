"""
Helpers for admin uploads: identifiers, object names and PDF inspection.
"""

from __future__ import annotations

import io
import re
import secrets
import string
import time
from pathlib import PurePosixPath

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from bookstore.catalog import book_prefix

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_ID_ALPHABET = string.ascii_lowercase + string.digits


class InvalidPdf(ValueError):
    pass


def _millis() -> int:
    return int(time.time() * 1000)


def new_record_id(kind: str) -> str:
    """Ids look like ``book_1764921889152_gc3erhyoj``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{kind}_{_millis()}_{suffix}"


def sanitize_filename(filename: str | None) -> str:
    return _UNSAFE_CHARS.sub("_", filename or "file")


def _stem(filename: str | None) -> str:
    sanitized = sanitize_filename(PurePosixPath(filename or "file").name)
    stem = sanitized.rsplit(".", 1)[0] if "." in sanitized else sanitized
    return stem or "file"


def single_pdf_path(book_id: str, filename: str | None) -> str:
    return f"{book_prefix(book_id)}book-{_millis()}-{_stem(filename)}.pdf"


def part_pdf_path(book_id: str, part_number: int, filename: str | None) -> str:
    return f"{book_prefix(book_id)}parts/part-{part_number}-{_millis()}-{_stem(filename)}.pdf"


def image_public_id(filename: str | None) -> str:
    return f"{_millis()}-{_stem(filename)}"


def inspect_pdf(data: bytes) -> int:
    """Return the page count of a PDF, raising InvalidPdf when it cannot be read."""
    if not data:
        raise InvalidPdf("empty file")
    try:
        reader = PdfReader(io.BytesIO(data))
        return len(reader.pages)
    except (PdfReadError, ValueError, KeyError, TypeError) as exc:
        raise InvalidPdf(str(exc)) from exc

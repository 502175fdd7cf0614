"""
Rebuild the book catalog after the database was lost.

By default the catalog is restored from the JSON snapshot mirrored to B2. With
--from-providers it is rebuilt from Cloudinary cover contexts plus the PDFs
found under each book's B2 prefix, which is the path of last resort when the
snapshot itself is missing or corrupted.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from bookstore.dependencies import get_catalog


logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Rebuild the book catalog")
    parser.add_argument(
        "--from-providers",
        action="store_true",
        help="Rebuild from Cloudinary and B2 instead of the B2 snapshot",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be restored without saving",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")
    catalog = get_catalog()

    if args.from_providers:
        books = catalog.rebuild_from_providers()
        source = "Cloudinary and B2"
    else:
        books = catalog.load_snapshot() or []
        source = catalog.snapshot_path

    if not books:
        logger.error("No books found in %s", source)
        return 1

    for book in books:
        parts = len(book.pdf_parts or [])
        logger.info(
            "%s: %s (%s)",
            book.id,
            book.title,
            f"{parts} parts" if parts else (book.pdf_file_name or "no PDF"),
        )

    if args.dry_run:
        logger.info("Dry run: %d books found in %s, nothing saved", len(books), source)
        return 0

    catalog.db.replace_books(books)
    catalog.write_snapshot()
    logger.info("Restored %d books from %s", len(books), source)
    return 0


if __name__ == "__main__":
    sys.exit(main())

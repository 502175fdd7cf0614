"""
Smoke test a running server's proxy chain for one book.

Fetches the book record, then its cover, view URL and the first bytes of its
PDF (or first part) through the server, reporting each step.
"""

from __future__ import annotations

import argparse
import logging
import sys

import requests

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30  # seconds


def _get(session: requests.Session, url: str, **kwargs) -> requests.Response:
    response = session.get(url, timeout=REQUEST_TIMEOUT, **kwargs)
    logger.info("GET %s -> %s", url, response.status_code)
    return response


def check_book(base_url: str, book_id: str) -> bool:
    api = f"{base_url.rstrip('/')}/api/books/{book_id}"
    session = requests.Session()
    ok = True

    book = _get(session, api)
    if book.status_code != 200:
        logger.error("Book %s not found", book_id)
        return False
    details = book.json()
    logger.info("Book: %s by %s", details.get("title"), details.get("author"))

    cover = _get(session, f"{api}/cover", allow_redirects=False)
    if cover.status_code not in (200, 302):
        logger.error("Cover check failed: %s", cover.text[:200])
        ok = False

    view = _get(session, f"{api}/view")
    if view.status_code != 200:
        logger.error("View check failed: %s", view.text[:200])
        return False
    view_url = view.json()["viewUrl"]
    logger.info("View URL: %s", view_url)

    pdf = _get(session, view_url, headers={"Range": "bytes=0-1023"}, stream=True)
    try:
        if pdf.status_code not in (200, 206):
            logger.error("PDF check failed with %s", pdf.status_code)
            return False
        head = next(pdf.iter_content(chunk_size=5), b"")
    finally:
        pdf.close()
    if not head.startswith(b"%PDF"):
        logger.error("Response does not look like a PDF: %r", head)
        return False
    logger.info(
        "PDF OK (content-range=%s, content-type=%s)",
        pdf.headers.get("content-range"),
        pdf.headers.get("content-type"),
    )
    return ok


def main() -> int:
    parser = argparse.ArgumentParser(description="Check the cover/view/pdf proxy chain")
    parser.add_argument("book_id", help="Book id to check")
    parser.add_argument(
        "--base-url",
        default="http://localhost:8000",
        help="Server base URL",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")
    try:
        passed = check_book(args.base_url, args.book_id)
    except requests.RequestException as exc:
        logger.error("Request failed: %s", exc)
        return 1
    return 0 if passed else 1


if __name__ == "__main__":
    sys.exit(main())

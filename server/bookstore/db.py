"""
Catalog persistence for SQL databases and an in-memory test implementation.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

from sqlalchemy import JSON, Column, Float, String, create_engine, delete, select
from sqlalchemy.orm import Session, declarative_base, sessionmaker


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class PdfPart:
    part_number: int
    b2_file_name: Optional[str]
    file_name: Optional[str] = None
    b2_file_id: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "partNumber": self.part_number,
            "b2FileName": self.b2_file_name,
            "fileName": self.file_name,
            "b2FileId": self.b2_file_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PdfPart":
        return cls(
            part_number=int(data.get("partNumber") or 0),
            b2_file_name=data.get("b2FileName"),
            file_name=data.get("fileName"),
            b2_file_id=data.get("b2FileId"),
        )

    @property
    def pdf_file_name(self) -> Optional[str]:
        return self.b2_file_name or self.file_name


@dataclass
class BookRecord:
    id: str
    title: str
    author: str
    description: str = ""
    category: str = "General"
    reading_time: str = "Flexible"
    rating: Optional[float] = 0
    is_trending: bool = False
    cover_image: Optional[str] = None
    cloudinary_cover_url: Optional[str] = None
    b2_cover_file_name: Optional[str] = None
    b2_file_name: Optional[str] = None
    file_name: Optional[str] = None
    b2_file_id: Optional[str] = None
    pdf_parts: Optional[list[PdfPart]] = None
    page_count: Optional[int] = None
    storage: Optional[dict] = None
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)

    @property
    def has_parts(self) -> bool:
        return bool(self.pdf_parts)

    @property
    def pdf_file_name(self) -> Optional[str]:
        return self.b2_file_name or self.file_name

    @property
    def sorted_parts(self) -> list[PdfPart]:
        return sorted(self.pdf_parts or [], key=lambda p: p.part_number)

    def get_part(self, part_number: int) -> Optional[PdfPart]:
        for part in self.pdf_parts or []:
            if part.part_number == part_number:
                return part
        return None

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "description": self.description,
            "category": self.category,
            "readingTime": self.reading_time,
            "rating": self.rating,
            "isTrending": self.is_trending,
            "coverImage": self.cover_image,
            "cloudinaryCoverUrl": self.cloudinary_cover_url,
            "b2CoverFileName": self.b2_cover_file_name,
            "b2FileName": self.b2_file_name,
            "fileName": self.file_name,
            "b2FileId": self.b2_file_id,
            "pdfParts": [p.as_dict() for p in self.pdf_parts] if self.pdf_parts else None,
            "pageCount": self.page_count,
            "storage": self.storage,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BookRecord":
        parts = data.get("pdfParts") or None
        return cls(
            id=data["id"],
            title=data.get("title") or "",
            author=data.get("author") or "",
            description=data.get("description") or "",
            category=data.get("category") or "General",
            reading_time=data.get("readingTime") or "Flexible",
            rating=data.get("rating") or 0,
            is_trending=bool(data.get("isTrending")),
            cover_image=data.get("coverImage") or data.get("coverImageUrl"),
            cloudinary_cover_url=data.get("cloudinaryCoverUrl"),
            b2_cover_file_name=data.get("b2CoverFileName"),
            b2_file_name=data.get("b2FileName"),
            file_name=data.get("fileName"),
            b2_file_id=data.get("b2FileId"),
            pdf_parts=[PdfPart.from_dict(p) for p in parts] if parts else None,
            page_count=data.get("pageCount"),
            storage=data.get("storage"),
            created_at=data.get("createdAt") or utc_now_iso(),
            updated_at=data.get("updatedAt") or data.get("createdAt") or utc_now_iso(),
        )


@dataclass
class BlogRecord:
    id: str
    title: str
    excerpt: str = ""
    description: str = ""
    category: str = "GENERAL"
    image: str = ""
    date: str = ""
    created_at: str = field(default_factory=utc_now_iso)

    @property
    def sort_key(self) -> str:
        return self.date or self.created_at or ""

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "excerpt": self.excerpt,
            "description": self.description,
            "category": self.category,
            "image": self.image,
            "date": self.date,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BlogRecord":
        return cls(
            id=data["id"],
            title=data.get("title") or "",
            excerpt=data.get("excerpt") or "",
            description=data.get("description") or "",
            category=data.get("category") or "GENERAL",
            image=data.get("image") or "",
            date=data.get("date") or "",
            created_at=data.get("createdAt") or utc_now_iso(),
        )


class DbClient(Protocol):
    """Interface for catalog persistence."""

    def list_books(self) -> list[BookRecord]:
        ...

    def get_book(self, book_id: str) -> Optional[BookRecord]:
        ...

    def save_book(self, book: BookRecord) -> None:
        ...

    def replace_books(self, books: list[BookRecord]) -> None:
        ...

    def delete_book(self, book_id: str) -> bool:
        ...

    def list_blogs(self) -> list[BlogRecord]:
        ...

    def get_blog(self, blog_id: str) -> Optional[BlogRecord]:
        ...

    def save_blog(self, blog: BlogRecord) -> None:
        ...

    def delete_blog(self, blog_id: str) -> bool:
        ...


class InMemoryDbClient:
    """Simple in-memory catalog for development and tests."""

    def __init__(self):
        self.books: Dict[str, dict] = {}
        self.blogs: Dict[str, dict] = {}

    # Records are stored as dicts so callers never share mutable state with the store.
    def list_books(self) -> list[BookRecord]:
        return [BookRecord.from_dict(data) for data in self.books.values()]

    def get_book(self, book_id: str) -> Optional[BookRecord]:
        data = self.books.get(book_id)
        return BookRecord.from_dict(data) if data else None

    def save_book(self, book: BookRecord) -> None:
        self.books[book.id] = book.as_dict()

    def replace_books(self, books: list[BookRecord]) -> None:
        self.books = {book.id: book.as_dict() for book in books}

    def delete_book(self, book_id: str) -> bool:
        return self.books.pop(book_id, None) is not None

    def list_blogs(self) -> list[BlogRecord]:
        return [BlogRecord.from_dict(data) for data in self.blogs.values()]

    def get_blog(self, blog_id: str) -> Optional[BlogRecord]:
        data = self.blogs.get(blog_id)
        return BlogRecord.from_dict(data) if data else None

    def save_blog(self, blog: BlogRecord) -> None:
        self.blogs[blog.id] = blog.as_dict()

    def delete_blog(self, blog_id: str) -> bool:
        return self.blogs.pop(blog_id, None) is not None

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.books.clear()
        self.blogs.clear()


class SqlDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def list_books(self) -> list[BookRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(BookRow).order_by(BookRow.position.asc())
            ).scalars()
            return [BookRecord.from_dict(row.data) for row in rows]

    def get_book(self, book_id: str) -> Optional[BookRecord]:
        with self.Session() as session:
            row = session.get(BookRow, book_id)
            return BookRecord.from_dict(row.data) if row else None

    def save_book(self, book: BookRecord) -> None:
        with self.Session() as session:
            row = session.get(BookRow, book.id)
            if row:
                row.data = book.as_dict()
                row.updated_at = time.time()
            else:
                session.add(
                    BookRow(
                        id=book.id,
                        data=book.as_dict(),
                        position=time.time(),
                        updated_at=time.time(),
                    )
                )
            session.commit()

    def replace_books(self, books: list[BookRecord]) -> None:
        now = time.time()
        with self.Session() as session:
            session.execute(delete(BookRow))
            for offset, book in enumerate(books):
                session.add(
                    BookRow(
                        id=book.id,
                        data=book.as_dict(),
                        position=now + offset * 1e-3,
                        updated_at=now,
                    )
                )
            session.commit()

    def delete_book(self, book_id: str) -> bool:
        with self.Session() as session:
            row = session.get(BookRow, book_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    def list_blogs(self) -> list[BlogRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(BlogRow).order_by(BlogRow.position.asc())
            ).scalars()
            return [BlogRecord.from_dict(row.data) for row in rows]

    def get_blog(self, blog_id: str) -> Optional[BlogRecord]:
        with self.Session() as session:
            row = session.get(BlogRow, blog_id)
            return BlogRecord.from_dict(row.data) if row else None

    def save_blog(self, blog: BlogRecord) -> None:
        with self.Session() as session:
            row = session.get(BlogRow, blog.id)
            if row:
                row.data = blog.as_dict()
            else:
                session.add(BlogRow(id=blog.id, data=blog.as_dict(), position=time.time()))
            session.commit()

    def delete_blog(self, blog_id: str) -> bool:
        with self.Session() as session:
            row = session.get(BlogRow, blog_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True


Base = declarative_base()


class BookRow(Base):
    __tablename__ = "books"

    id = Column(String, primary_key=True)
    data = Column(JSON, nullable=False)
    position = Column(Float, nullable=False, index=True)
    updated_at = Column(Float, nullable=False)


class BlogRow(Base):
    __tablename__ = "blogs"

    id = Column(String, primary_key=True)
    data = Column(JSON, nullable=False)
    position = Column(Float, nullable=False)

"""
Bookstore backend package.

A FastAPI service that keeps the book catalog in SQL, stores PDFs in
Backblaze B2 and cover/blog images in Cloudinary, and proxies reads so the
browser never needs provider credentials.
"""

"""
Storage abstraction for Backblaze B2 (S3-compatible) and in-memory testing.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import timezone
from email.utils import format_datetime
from typing import Iterator, Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from bookstore.streaming import RangeNotSatisfiable, content_disposition, parse_range

STREAM_CHUNK_SIZE = 64 * 1024
VERSION_SCAN_LIMIT = 1000

_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchVersion", "NotFound", "404"}
_BAD_VERSION_CODES = {"InvalidArgument", "400"}


class StorageError(Exception):
    """Raised when the object store rejects or fails a request."""


class ObjectNotFound(StorageError, FileNotFoundError):
    """Raised when no object exists under the requested name or file id."""


@dataclass
class StoredObject:
    name: str
    file_id: Optional[str] = None
    size: Optional[int] = None
    content_type: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "fileName": self.name,
            "fileId": self.file_id,
            "size": self.size,
            "contentType": self.content_type,
        }


@dataclass
class ObjectStream:
    """An open object body plus the headers a proxy needs to mirror."""

    body: Iterator[bytes]
    status: int = 200
    content_length: Optional[int] = None
    content_type: Optional[str] = None
    content_range: Optional[str] = None
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    accept_ranges: Optional[str] = "bytes"

    def read_all(self) -> bytes:
        return b"".join(self.body)


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    def upload_bytes(
        self, path: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> StoredObject:
        ...

    def upload_json(self, path: str, payload) -> None:
        ...

    def get_bytes(self, path: str, file_id: Optional[str] = None) -> bytes:
        ...

    def open_stream(
        self,
        path: str,
        *,
        byte_range: Optional[str] = None,
        file_id: Optional[str] = None,
    ) -> ObjectStream:
        ...

    def find_object(self, path: str) -> Optional[StoredObject]:
        ...

    def find_version(self, path: str, file_id: str) -> Optional[StoredObject]:
        ...

    def list_objects(self, prefix: str = "", limit: int = 1000) -> list[StoredObject]:
        ...

    def delete_object(self, path: str, file_id: Optional[str] = None) -> None:
        ...

    def presign_get(
        self,
        path: str,
        expires_in: int = 3600,
        download_name: Optional[str] = None,
    ) -> str:
        ...

    def ping(self) -> None:
        ...


@dataclass
class _MemoryObject:
    data: bytes
    content_type: str
    file_id: str


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage"
    stored_objects: dict = field(default_factory=dict)

    def upload_bytes(
        self, path: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> StoredObject:
        obj = _MemoryObject(data=bytes(data), content_type=content_type, file_id=uuid.uuid4().hex)
        self.stored_objects[path] = obj
        return StoredObject(
            name=path, file_id=obj.file_id, size=len(obj.data), content_type=content_type
        )

    def upload_json(self, path: str, payload) -> None:
        # Use JSON string to mimic real upload behavior
        body = json.dumps(payload, default=str).encode("utf-8")
        self.upload_bytes(path, body, "application/json")

    def _lookup(self, path: str, file_id: Optional[str]) -> tuple[str, _MemoryObject]:
        # Like S3, a version id only addresses an object under its own key.
        obj = self.stored_objects.get(path)
        if obj is None or (file_id and obj.file_id != file_id):
            raise ObjectNotFound(path)
        return path, obj

    def get_bytes(self, path: str, file_id: Optional[str] = None) -> bytes:
        _, obj = self._lookup(path, file_id)
        return obj.data

    def open_stream(
        self,
        path: str,
        *,
        byte_range: Optional[str] = None,
        file_id: Optional[str] = None,
    ) -> ObjectStream:
        _, obj = self._lookup(path, file_id)
        size = len(obj.data)
        bounds = parse_range(byte_range, size)
        if bounds is None:
            return ObjectStream(
                body=iter([obj.data]),
                content_length=size,
                content_type=obj.content_type,
                etag=f'"{obj.file_id}"',
            )
        start, end = bounds
        return ObjectStream(
            body=iter([obj.data[start : end + 1]]),
            status=206,
            content_length=end - start + 1,
            content_type=obj.content_type,
            content_range=f"bytes {start}-{end}/{size}",
            etag=f'"{obj.file_id}"',
        )

    def find_object(self, path: str) -> Optional[StoredObject]:
        obj = self.stored_objects.get(path)
        if obj is None:
            return None
        return StoredObject(
            name=path, file_id=obj.file_id, size=len(obj.data), content_type=obj.content_type
        )

    def find_version(self, path: str, file_id: str) -> Optional[StoredObject]:
        names = [path] + sorted(self.stored_objects)
        for name in names:
            obj = self.stored_objects.get(name)
            if obj is not None and obj.file_id == file_id:
                return StoredObject(
                    name=name,
                    file_id=obj.file_id,
                    size=len(obj.data),
                    content_type=obj.content_type,
                )
        return None

    def list_objects(self, prefix: str = "", limit: int = 1000) -> list[StoredObject]:
        names = sorted(name for name in self.stored_objects if name.startswith(prefix))
        return [self.find_object(name) for name in names[:limit]]

    def delete_object(self, path: str, file_id: Optional[str] = None) -> None:
        name, _ = self._lookup(path, file_id)
        del self.stored_objects[name]

    def presign_get(
        self,
        path: str,
        expires_in: int = 3600,
        download_name: Optional[str] = None,
    ) -> str:
        url = f"{self.base_url}/{path}?op=get&expires={expires_in}"
        if download_name:
            url += f"&download={download_name}"
        return url

    def ping(self) -> None:
        return None


@dataclass
class B2StorageClient:
    """
    Backblaze B2 client speaking the S3-compatible API.

    B2 exposes each file version's fileId as the S3 VersionId, so cached file
    ids from older records can be fetched directly.
    """

    bucket: str
    endpoint: str
    region: str
    access_key_id: str
    secret_access_key: str
    cdn_base_url: Optional[str] = None

    def __post_init__(self):
        config = Config(
            s3={"addressing_style": "path"},
            signature_version="s3v4",
            retries={"max_attempts": 3, "mode": "standard"},
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint,
            region_name=self.region,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )
        # Signed URLs handed to browsers point at the CDN when one fronts the bucket.
        if self.cdn_base_url:
            self._signer = boto3.client(
                "s3",
                endpoint_url=self.cdn_base_url.rstrip("/"),
                region_name=self.region,
                aws_access_key_id=self.access_key_id,
                aws_secret_access_key=self.secret_access_key,
                config=config,
            )
        else:
            self._signer = self._client

    def _error(self, exc: Exception, path: str) -> Exception:
        if isinstance(exc, ClientError):
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                return ObjectNotFound(path)
            if code == "InvalidRange":
                return RangeNotSatisfiable(path)
        return StorageError(f"{path}: {exc}")

    def upload_bytes(
        self, path: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> StoredObject:
        try:
            response = self._client.put_object(
                Bucket=self.bucket, Key=path, Body=data, ContentType=content_type
            )
        except (ClientError, BotoCoreError) as exc:
            raise self._error(exc, path) from exc
        return StoredObject(
            name=path,
            file_id=response.get("VersionId"),
            size=len(data),
            content_type=content_type,
        )

    def upload_json(self, path: str, payload) -> None:
        body = json.dumps(payload, default=str, indent=2).encode("utf-8")
        self.upload_bytes(path, body, "application/json")

    def _get_object(
        self, path: str, byte_range: Optional[str], file_id: Optional[str]
    ) -> dict:
        params = {"Bucket": self.bucket, "Key": path}
        if byte_range:
            params["Range"] = byte_range
        if file_id:
            params["VersionId"] = file_id
        try:
            return self._client.get_object(**params)
        except (ClientError, BotoCoreError) as exc:
            raise self._error(exc, path) from exc

    def get_bytes(self, path: str, file_id: Optional[str] = None) -> bytes:
        response = self._get_object(path, None, file_id)
        return response["Body"].read()

    def open_stream(
        self,
        path: str,
        *,
        byte_range: Optional[str] = None,
        file_id: Optional[str] = None,
    ) -> ObjectStream:
        response = self._get_object(path, byte_range, file_id)
        last_modified = response.get("LastModified")
        return ObjectStream(
            body=response["Body"].iter_chunks(chunk_size=STREAM_CHUNK_SIZE),
            status=response.get("ResponseMetadata", {}).get("HTTPStatusCode", 200),
            content_length=response.get("ContentLength"),
            content_type=response.get("ContentType"),
            content_range=response.get("ContentRange"),
            etag=response.get("ETag"),
            last_modified=format_datetime(last_modified.astimezone(timezone.utc), usegmt=True)
            if last_modified
            else None,
            accept_ranges=response.get("AcceptRanges", "bytes"),
        )

    def find_object(self, path: str) -> Optional[StoredObject]:
        return self._head(path)

    def find_version(self, path: str, file_id: str) -> Optional[StoredObject]:
        """
        Find the object holding version ``file_id``.

        S3 only matches a version id under its own key, so when the record's
        name is stale the version listing is scanned for the id, first under
        the name's folder and then across the bucket.
        """
        found = self._head(path, file_id)
        if found:
            return found
        prefixes = [""]
        if "/" in path:
            prefixes.insert(0, path.rsplit("/", 1)[0] + "/")
        for prefix in prefixes:
            found = self._scan_versions(prefix, file_id)
            if found:
                return found
        return None

    def _scan_versions(self, prefix: str, file_id: str) -> Optional[StoredObject]:
        paginator = self._client.get_paginator("list_object_versions")
        scanned = 0
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for version in page.get("Versions", []):
                    if version.get("VersionId") == file_id:
                        return StoredObject(
                            name=version["Key"], file_id=file_id, size=version.get("Size")
                        )
                    scanned += 1
                    if scanned >= VERSION_SCAN_LIMIT:
                        return None
        except (ClientError, BotoCoreError) as exc:
            raise self._error(exc, prefix or "/") from exc
        return None

    def _head(self, path: str, file_id: Optional[str] = None) -> Optional[StoredObject]:
        params = {"Bucket": self.bucket, "Key": path}
        if file_id:
            params["VersionId"] = file_id
        try:
            response = self._client.head_object(**params)
        except ClientError as exc:
            error = self._error(exc, path)
            if isinstance(error, ObjectNotFound):
                return None
            # A version id from another key can be rejected as malformed.
            if file_id and exc.response.get("Error", {}).get("Code") in _BAD_VERSION_CODES:
                return None
            raise error from exc
        except BotoCoreError as exc:
            raise self._error(exc, path) from exc
        return StoredObject(
            name=path,
            file_id=response.get("VersionId"),
            size=response.get("ContentLength"),
            content_type=response.get("ContentType"),
        )

    def list_objects(self, prefix: str = "", limit: int = 1000) -> list[StoredObject]:
        paginator = self._client.get_paginator("list_object_versions")
        results: list[StoredObject] = []
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for version in page.get("Versions", []):
                    if not version.get("IsLatest", True):
                        continue
                    results.append(
                        StoredObject(
                            name=version["Key"],
                            file_id=version.get("VersionId"),
                            size=version.get("Size"),
                        )
                    )
                    if len(results) >= limit:
                        return results
        except (ClientError, BotoCoreError) as exc:
            raise self._error(exc, prefix or "/") from exc
        return results

    def delete_object(self, path: str, file_id: Optional[str] = None) -> None:
        if not file_id:
            found = self.find_object(path)
            if found is None:
                raise ObjectNotFound(path)
            file_id = found.file_id
        params = {"Bucket": self.bucket, "Key": path}
        if file_id:
            params["VersionId"] = file_id
        try:
            self._client.delete_object(**params)
        except (ClientError, BotoCoreError) as exc:
            raise self._error(exc, path) from exc

    def presign_get(
        self,
        path: str,
        expires_in: int = 3600,
        download_name: Optional[str] = None,
    ) -> str:
        params = {"Bucket": self.bucket, "Key": path}
        if download_name:
            params["ResponseContentDisposition"] = content_disposition(download_name)
        return self._signer.generate_presigned_url(
            ClientMethod="get_object",
            Params=params,
            ExpiresIn=expires_in,
        )

    def ping(self) -> None:
        try:
            self._client.head_bucket(Bucket=self.bucket)
        except (ClientError, BotoCoreError) as exc:
            raise self._error(exc, self.bucket) from exc

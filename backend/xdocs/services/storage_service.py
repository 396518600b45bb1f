"""
Blob storage for document bytes, keyed by a relative storage path.

Two backends share one interface: a local directory tree and a Google
Cloud Storage bucket.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from google.cloud import storage
from google.cloud.exceptions import NotFound as GCSNotFound

logger = logging.getLogger(__name__)


class BlobMissing(Exception):
    """The requested blob does not exist in the store."""


def _check_rel_path(rel_path: str) -> str:
    """Reject absolute paths and parent-directory components."""
    if not rel_path or rel_path.startswith(("/", "\\")):
        raise ValueError(f"Invalid storage path: {rel_path!r}")
    parts = rel_path.replace("\\", "/").split("/")
    if any(part in ("", ".", "..") for part in parts):
        raise ValueError(f"Invalid storage path: {rel_path!r}")
    return "/".join(parts)


class LocalStorageService:
    """
    Service for storing document bytes on the local filesystem.

    Attributes:
        root: Directory under which all blobs live
    """

    def __init__(self, root: str):
        self.root = Path(root)

    def _path(self, rel_path: str) -> Path:
        return self.root / _check_rel_path(rel_path)

    def save(self, rel_path: str, data: bytes, content_type: Optional[str] = None) -> str:
        """
        Write bytes to the store.

        Args:
            rel_path: Storage key
            data: File contents
            content_type: MIME type (unused by the filesystem backend)

        Returns:
            The storage key
        """
        path = self._path(rel_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".part")
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)
        return rel_path

    def read(self, rel_path: str) -> bytes:
        """Read a blob's bytes; raises BlobMissing if it does not exist."""
        path = self._path(rel_path)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise BlobMissing(rel_path)

    def exists(self, rel_path: str) -> bool:
        return self._path(rel_path).is_file()

    def delete(self, rel_path: str) -> bool:
        """
        Delete a blob.

        Returns:
            True if the blob was deleted, False if it didn't exist
        """
        path = self._path(rel_path)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        # Drop the per-document directory once empty
        try:
            path.parent.rmdir()
        except OSError:
            pass
        return True


class StorageService:
    """
    Service for storing document bytes in Google Cloud Storage.

    Attributes:
        bucket_name: Bucket holding all blobs
        client: Google Cloud Storage client instance
    """

    def __init__(self, bucket_name: str, project_id: Optional[str] = None, client: Optional[storage.Client] = None):
        """
        Initialize the storage service.

        Args:
            bucket_name: Target bucket
            project_id: GCP project identifier
            client: Pre-built client (defaults to one for ``project_id``)
        """
        self.bucket_name = bucket_name
        self.client = client or storage.Client(project=project_id)

    def _blob(self, rel_path: str):
        bucket = self.client.bucket(self.bucket_name)
        return bucket.blob(_check_rel_path(rel_path))

    def save(self, rel_path: str, data: bytes, content_type: Optional[str] = None) -> str:
        """
        Upload bytes to the bucket.

        Returns:
            The storage key
        """
        blob = self._blob(rel_path)
        blob.upload_from_string(data, content_type=content_type or "application/octet-stream")
        return rel_path

    def read(self, rel_path: str) -> bytes:
        """Download a blob's bytes; raises BlobMissing if it does not exist."""
        blob = self._blob(rel_path)
        try:
            return blob.download_as_bytes()
        except GCSNotFound:
            raise BlobMissing(rel_path)

    def exists(self, rel_path: str) -> bool:
        return self._blob(rel_path).exists()

    def delete(self, rel_path: str) -> bool:
        """
        Delete a blob from the bucket.

        Returns:
            True if the blob was deleted, False if it didn't exist
        """
        blob = self._blob(rel_path)
        if not blob.exists():
            return False
        blob.delete()
        return True


def build_storage_service(backend: str, root: str, bucket_name: Optional[str], project_id: Optional[str]):
    """Select the blob store backend from configuration."""
    if backend == "local":
        return LocalStorageService(root)
    if backend == "gcs":
        if not bucket_name:
            raise ValueError("STORAGE_BUCKET is required when STORAGE_BACKEND is 'gcs'")
        return StorageService(bucket_name, project_id=project_id)
    raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")

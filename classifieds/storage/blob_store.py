"""
Blob storage for listing images.
Key-addressed binary storage, separate from the relational store.
"""

import os
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional

import redis

from classifieds.errors import NotFoundError, StorageError


class BlobStore(ABC):
    """Abstract interface for blob storage"""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    @abstractmethod
    def upload(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        """Store data under key and return its public URL"""
        pass

    @abstractmethod
    def read(self, key: str) -> bytes:
        """Return the stored bytes, raising NotFoundError if absent"""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a blob; missing keys are not an error"""
        pass


class InMemoryBlobStore(BlobStore):
    """Dict-backed store for tests and single-process runs"""

    def __init__(self, base_url: str = "/media"):
        super().__init__(base_url)
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def upload(self, key, data, content_type=None):
        with self._lock:
            self._blobs[key] = bytes(data)
        return self.url_for(key)

    def read(self, key):
        with self._lock:
            data = self._blobs.get(key)
        if data is None:
            raise NotFoundError(f"Blob {key} not found")
        return data

    def delete(self, key):
        with self._lock:
            self._blobs.pop(key, None)

    def keys(self):
        with self._lock:
            return sorted(self._blobs)


class LocalBlobStore(BlobStore):
    """Stores blobs as files below a root directory"""

    def __init__(self, root_dir: str, base_url: str = "/media"):
        super().__init__(base_url)
        self.root_dir = os.path.abspath(root_dir)

    def _path(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.root_dir, key))
        if os.path.commonpath([path, self.root_dir]) != self.root_dir:
            raise StorageError(f"Blob key escapes storage root: {key}")
        return path

    def upload(self, key, data, content_type=None):
        path = self._path(key)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as f:
                f.write(data)
        except OSError as e:
            raise StorageError(f"Could not write blob {key}: {e}") from e
        return self.url_for(key)

    def read(self, key):
        path = self._path(key)
        if not os.path.isfile(path):
            raise NotFoundError(f"Blob {key} not found")
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise StorageError(f"Could not read blob {key}: {e}") from e

    def delete(self, key):
        path = self._path(key)
        try:
            os.remove(path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError(f"Could not delete blob {key}: {e}") from e


class RedisBlobStore(BlobStore):
    """Stores blobs as Redis string values under a key prefix"""

    def __init__(self, client: redis.Redis, base_url: str = "/media", prefix: str = "blob:"):
        super().__init__(base_url)
        self.client = client
        self.prefix = prefix

    def upload(self, key, data, content_type=None):
        try:
            self.client.set(f"{self.prefix}{key}", data)
            if content_type:
                self.client.set(f"{self.prefix}{key}:content-type", content_type)
        except redis.RedisError as e:
            raise StorageError(f"Could not store blob {key}: {e}") from e
        return self.url_for(key)

    def read(self, key):
        try:
            data = self.client.get(f"{self.prefix}{key}")
        except redis.RedisError as e:
            raise StorageError(f"Could not read blob {key}: {e}") from e
        if data is None:
            raise NotFoundError(f"Blob {key} not found")
        return data

    def delete(self, key):
        try:
            self.client.delete(f"{self.prefix}{key}", f"{self.prefix}{key}:content-type")
        except redis.RedisError as e:
            raise StorageError(f"Could not delete blob {key}: {e}") from e


def build_blob_store(settings) -> BlobStore:
    backend = (settings.BLOB_BACKEND or "local").strip().lower()
    if backend == "memory":
        return InMemoryBlobStore(settings.MEDIA_BASE_URL)
    if backend == "redis":
        client = redis.Redis.from_url(settings.REDIS_URL)
        return RedisBlobStore(client, settings.MEDIA_BASE_URL)
    if backend == "local":
        return LocalBlobStore(settings.UPLOAD_DIR, settings.MEDIA_BASE_URL)
    raise ValueError(f"Unknown BLOB_BACKEND '{settings.BLOB_BACKEND}'")

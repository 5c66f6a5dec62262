"""
Object store adapters.

The pipeline talks to binary storage through the ObjectStore interface:
- SupabaseObjectStore: Supabase Storage REST API (public bucket)
- LocalObjectStore: filesystem directory (development)

get_object_store() picks an adapter from environment variables.
"""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from urllib.parse import quote

import requests
from dotenv import load_dotenv
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from pipeline.errors import ConfigurationError

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "product-images"
CACHE_CONTROL = "public, max-age=31536000"


class ObjectStoreError(Exception):
    """Storage backend rejected or failed an operation."""
    pass


class ObjectStore(ABC):
    """Abstract object store (bucket with public-read objects)."""

    @abstractmethod
    def upload(self, path: str, data: bytes, content_type: str, upsert: bool = True) -> None:
        """
        Store bytes under a path.

        Args:
            path: Object path inside the bucket, e.g. "thumb/x_thumb.webp".
            data: Object bytes.
            content_type: MIME type.
            upsert: Overwrite an existing object instead of failing.

        Raises:
            ObjectStoreError: If the object could not be stored.
        """

    @abstractmethod
    def get_public_url(self, path: str) -> str:
        """Public URL of an object path."""

    @abstractmethod
    def list(self, prefix: str) -> list[str]:
        """Names of the objects directly under a prefix folder."""


class LocalObjectStore(ObjectStore):
    """Filesystem object store (for development)."""

    def __init__(self, base_path: str | Path | None = None, public_url: str | None = None):
        self.base_path = Path(base_path or os.getenv("STORAGE_BASE_PATH", "./storage")).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_url = (
            public_url or os.getenv("STORAGE_PUBLIC_URL") or self.base_path.as_uri()
        ).rstrip("/")

    def _get_full_path(self, path: str) -> Path:
        full_path = (self.base_path / path.lstrip("/")).resolve()
        if self.base_path not in full_path.parents:
            raise ObjectStoreError(f"Path escapes storage root: {path}")
        return full_path

    def upload(self, path: str, data: bytes, content_type: str, upsert: bool = True) -> None:
        full_path = self._get_full_path(path)
        if full_path.exists() and not upsert:
            raise ObjectStoreError(f"Object already exists: {path}")

        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_bytes(data)
        except OSError as e:
            raise ObjectStoreError(f"Failed to write {path}: {e}") from e

    def get_public_url(self, path: str) -> str:
        return f"{self.public_url}/{path.lstrip('/')}"

    def list(self, prefix: str) -> list[str]:
        folder = self._get_full_path(prefix)
        if not folder.is_dir():
            return []
        return sorted(p.name for p in folder.iterdir() if p.is_file())


class SupabaseObjectStore(ObjectStore):
    """
    Supabase Storage adapter.

    Uses the Storage REST API with the service key, so bucket policies
    do not apply.
    """

    LIST_PAGE_SIZE = 1000

    def __init__(
        self,
        url: str | None = None,
        service_key: str | None = None,
        bucket: str | None = None,
        max_retries: int = 3,
        timeout: int = 60,
    ):
        """
        Initialize Supabase storage client.

        Args:
            url: Project URL. Defaults to SUPABASE_URL.
            service_key: Service role key. Defaults to SUPABASE_SERVICE_KEY.
            bucket: Bucket name. Defaults to STORAGE_BUCKET or product-images.
            max_retries: Retries for 5xx responses and connection errors.
            timeout: Request timeout in seconds.

        Raises:
            ConfigurationError: If URL or service key is missing.
        """
        self.url = (url or os.getenv("SUPABASE_URL") or "").rstrip("/")
        self.service_key = service_key or os.getenv("SUPABASE_SERVICE_KEY")
        self.bucket = bucket or os.getenv("STORAGE_BUCKET", DEFAULT_BUCKET)
        self.timeout = timeout

        if not self.url or not self.service_key:
            raise ConfigurationError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY are required for Supabase storage."
            )

        # Setup requests session with connection pooling
        self._session = requests.Session()
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=1,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=None,  # Uploads are upserts, safe to repeat
        )
        adapter = HTTPAdapter(
            pool_connections=5,
            pool_maxsize=10,
            max_retries=retry_strategy,
        )
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)
        self._session.headers.update({
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key,
        })

    def _object_url(self, path: str) -> str:
        return f"{self.url}/storage/v1/object/{self.bucket}/{quote(path.lstrip('/'))}"

    def upload(self, path: str, data: bytes, content_type: str, upsert: bool = True) -> None:
        headers = {
            "Content-Type": content_type,
            "cache-control": CACHE_CONTROL,
            "x-upsert": "true" if upsert else "false",
        }
        try:
            response = self._session.post(
                self._object_url(path), data=data, headers=headers, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise ObjectStoreError(f"Upload of {path} failed: {e}") from e

        if response.status_code == 401 or response.status_code == 403:
            raise ConfigurationError(f"Storage rejected credentials ({response.status_code})")

        if not response.ok:
            raise ObjectStoreError(
                f"Upload of {path} failed ({response.status_code}): {response.text[:200]}"
            )

        logger.debug(f"Uploaded {path} ({len(data)} bytes)")

    def get_public_url(self, path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{quote(path.lstrip('/'))}"

    def list(self, prefix: str) -> list[str]:
        names: list[str] = []
        offset = 0
        while True:
            try:
                response = self._session.post(
                    f"{self.url}/storage/v1/object/list/{self.bucket}",
                    json={
                        "prefix": prefix.strip("/"),
                        "limit": self.LIST_PAGE_SIZE,
                        "offset": offset,
                        "sortBy": {"column": "name", "order": "asc"},
                    },
                    timeout=self.timeout,
                )
                response.raise_for_status()
            except requests.exceptions.RequestException as e:
                raise ObjectStoreError(f"Listing {prefix} failed: {e}") from e

            page = response.json()
            # Folders come back without an id
            names.extend(item["name"] for item in page if item.get("id"))
            if len(page) < self.LIST_PAGE_SIZE:
                return names
            offset += self.LIST_PAGE_SIZE


def get_object_store() -> ObjectStore:
    """
    Factory function to get the object store based on environment variables.

    STORAGE_TYPE selects the adapter ("supabase" or "local"); when unset,
    Supabase is used if SUPABASE_URL is present.
    """
    storage_type = os.getenv("STORAGE_TYPE") or ("supabase" if os.getenv("SUPABASE_URL") else "local")

    if storage_type == "supabase":
        return SupabaseObjectStore()
    if storage_type == "local":
        return LocalObjectStore()

    raise ConfigurationError(f"Unknown storage type: {storage_type}")

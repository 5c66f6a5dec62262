"""
Content hashing and duplicate detection module.

Provides:
- SHA256 content digests of source bytes
- The dedup gate: digests already stored, or already claimed by another
  file of the same run, are reported as duplicates
- Image slot claims: one digest per (product, image index)
"""

import hashlib
import logging
import threading

from db.operations import ProductImageRepository
from pipeline.errors import DuplicateImage, ImageSlotTaken

logger = logging.getLogger(__name__)


def calculate_hash(data: bytes) -> str:
    """
    Calculate the SHA256 hex digest of raw bytes.

    Args:
        data: Source image bytes.

    Returns:
        64-character hexadecimal digest.
    """
    return hashlib.sha256(data).hexdigest()


class DuplicateHandler:
    """
    Dedup gate for one pipeline run.

    A digest is a duplicate when the relational store already has a row
    with that file_hash, or when another file of the current run claimed
    it first. Claims are taken under a lock so concurrent workers see a
    single winner.
    """

    def __init__(self, repository: ProductImageRepository | None = None):
        """
        Initialize duplicate handler.

        Args:
            repository: ProductImageRepository for digest lookups.
                       If None, creates a new one.
        """
        self.repository = repository or ProductImageRepository()
        self._claimed: set[str] = set()
        self._slots: dict[tuple[int, int], str] = {}
        self._lock = threading.Lock()

    def calculate_hash(self, data: bytes) -> str:
        """Calculate the content digest of source bytes."""
        return calculate_hash(data)

    def is_stored(self, digest: str) -> bool:
        """Check if the digest already exists in the relational store."""
        return self.repository.exists_by_hash(digest)

    def claim(self, digest: str) -> bool:
        """
        Claim a digest for this run.

        Returns:
            True if the caller is the first to claim it.
        """
        with self._lock:
            if digest in self._claimed:
                return False
            self._claimed.add(digest)
            return True

    def check(self, data: bytes, filename: str) -> str:
        """
        Hash the bytes and pass them through the dedup gate.

        Args:
            data: Source image bytes.
            filename: Source filename, for reporting.

        Returns:
            The content digest.

        Raises:
            DuplicateImage: If the content was already ingested or claimed.
        """
        digest = self.calculate_hash(data)

        if not self.claim(digest):
            raise DuplicateImage(
                f"Same content as another file in this run ({digest[:12]})",
                filename=filename,
                digest=digest,
            )

        if self.is_stored(digest):
            raise DuplicateImage(
                f"Content already ingested ({digest[:12]})",
                filename=filename,
                digest=digest,
            )

        return digest

    def release(self, digest: str) -> None:
        """Give a digest back so an identical file later in the run can use it."""
        with self._lock:
            self._claimed.discard(digest)

    def claim_slot(self, product_id: int, image_index: int, digest: str, filename: str) -> None:
        """
        Claim one image index of a product for a digest.

        The slot is taken when another file of this run claimed it, or when
        the store already holds a different image there.

        Raises:
            ImageSlotTaken: If the slot belongs to another image.
        """
        key = (product_id, image_index)
        with self._lock:
            owner = self._slots.get(key)
            if owner is not None and owner != digest:
                raise ImageSlotTaken(
                    f"Image {image_index} of product {product_id} is claimed by another file in this run",
                    filename=filename,
                )
            self._slots[key] = digest

        stored = self.repository.hashes_at(product_id, image_index)
        if stored and digest not in stored:
            self.release_slot(product_id, image_index, digest)
            raise ImageSlotTaken(
                f"Image {image_index} of product {product_id} already holds another image",
                filename=filename,
            )

    def release_slot(self, product_id: int, image_index: int, digest: str) -> None:
        """Give a slot back if the digest still owns it."""
        with self._lock:
            if self._slots.get((product_id, image_index)) == digest:
                del self._slots[(product_id, image_index)]

    def reset(self) -> None:
        """Forget all claims (start of a new run)."""
        with self._lock:
            self._claimed.clear()
            self._slots.clear()

"""
Asset upload module.

Stores each encoded variant at {profile}/{baseName}_{profile}.{ext} and
bundles the uploaded variants of one source image into an AssignmentGroup.
Uploads overwrite, so re-uploading a path is idempotent.
"""

import logging
from dataclasses import dataclass

from pipeline.encoder import OUTPUT_EXTENSION, OUTPUT_MIME_TYPE, EncodedVariant
from pipeline.errors import ConfigurationError, UploadError
from pipeline.object_store import ObjectStore, ObjectStoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssetVariant:
    """One uploaded profile of one source image."""
    profile: str
    path: str
    url: str
    byte_size: int | None = None


@dataclass(frozen=True)
class AssignmentGroup:
    """All profile variants of one source image; allocated as a unit."""
    base_name: str
    variants: tuple[AssetVariant, ...]
    digest: str | None = None
    sequence: int = 1

    @property
    def key(self) -> str:
        return f"{self.digest or self.base_name}:{self.sequence}"

    def variant(self, profile: str) -> AssetVariant | None:
        for variant in self.variants:
            if variant.profile == profile:
                return variant
        return None

    def is_complete(self, profiles: list[str]) -> bool:
        return {v.profile for v in self.variants} == set(profiles)


def build_object_path(profile: str, base_name: str, extension: str = OUTPUT_EXTENSION) -> str:
    """Object path for one variant: {profile}/{baseName}_{profile}.{ext}"""
    return f"{profile}/{base_name}_{profile}.{extension}"


def build_base_name(digest: str, product_id: int | None = None, sequence: int = 1) -> str:
    """
    Content-addressed base name for a source image.

    product_<id>_<sequence>_<digest> when the product is known,
    image_<digest> otherwise.
    """
    if product_id is None:
        return f"image_{digest}"
    return f"product_{product_id}_{sequence}_{digest}"


class AssetUploader:
    """
    Uploads encoded variants to the object store.

    A group is uploaded in profile order; the first failure aborts the
    group with UploadError. Already uploaded variants are left in place
    (the next run overwrites them).
    """

    def __init__(self, store: ObjectStore, dry_run: bool = False):
        """
        Initialize uploader.

        Args:
            store: Object store to write to.
            dry_run: Compute paths and URLs without uploading.
        """
        self.store = store
        self.dry_run = dry_run

    def upload_variant(self, variant: EncodedVariant, base_name: str) -> AssetVariant:
        """
        Upload one encoded variant.

        Raises:
            UploadError: If the object store rejects the upload.
        """
        path = build_object_path(variant.profile.name, base_name)

        if not self.dry_run:
            try:
                self.store.upload(path, variant.data, OUTPUT_MIME_TYPE, upsert=True)
            except ConfigurationError:
                raise
            except ObjectStoreError as e:
                raise UploadError(str(e)) from e

        return AssetVariant(
            profile=variant.profile.name,
            path=path,
            url=self.store.get_public_url(path),
            byte_size=len(variant.data),
        )

    def upload_group(
        self,
        variants: list[EncodedVariant],
        base_name: str,
        digest: str | None = None,
        sequence: int = 1,
        filename: str | None = None,
    ) -> AssignmentGroup:
        """
        Upload every variant of one source image.

        Args:
            variants: Encoded variants, one per profile.
            base_name: Content-addressed base name.
            digest: Content digest of the source.
            sequence: Image sequence number.
            filename: Source filename, for error reporting.

        Returns:
            AssignmentGroup with one AssetVariant per profile.

        Raises:
            UploadError: If any variant fails; the group is discarded.
        """
        uploaded = []
        for variant in variants:
            try:
                uploaded.append(self.upload_variant(variant, base_name))
            except UploadError as e:
                logger.error(f"Upload failed for {filename or base_name} ({variant.profile.name}): {e}")
                raise UploadError(
                    f"{variant.profile.name}: {e}", filename=filename
                ) from e

        if not self.dry_run:
            logger.debug(f"Uploaded {len(uploaded)} variants of {base_name}")

        return AssignmentGroup(
            base_name=base_name,
            variants=tuple(uploaded),
            digest=digest,
            sequence=sequence,
        )

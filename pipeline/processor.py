"""
Main image ingestion pipeline orchestrator.

Coordinates all pipeline stages for each source file:
1. File discovery
2. Content hashing and duplicate check
3. Filename parsing, product matching and image slot claim
4. Multi-resolution encoding
5. Object store upload
6. Row building (or randomized allocation)
7. Batched persistence

Files are processed in fixed-size batches. Within a batch the files run
concurrently on a thread pool; batches run one after another with a short
pause in between. Per-file failures are recorded and never affect sibling
files. Fatal errors abort the run.

Ingestion modes:
- OCCASION: <tag>.<productId>.<sequence>.<ext>, direct product IDs
- REINGEST: product_<productId>_<sequence>_<hash>.<ext>, direct product IDs
- FUZZY:    descriptive names matched against product name/slug
- RANDOM:   no filename semantics; groups are allocated to active products
"""

import logging
import random
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from sqlalchemy.orm import sessionmaker

from db.models import ImageSize
from db.operations import AuditIssue, ProductImageRepository, ProductRepository
from pipeline.allocator import AssignmentAllocator, ProductImageRecord, records_for_group
from pipeline.duplicate_handler import DuplicateHandler
from pipeline.encoder import (
    DEFAULT_PROFILES,
    OUTPUT_EXTENSION,
    PRIMARY_PROFILE,
    MultiResolutionEncoder,
    ResolutionProfile,
)
from pipeline.errors import EncodingError, FatalPipelineError, FileFailed, FileSkipped
from pipeline.file_scanner import FileScanner
from pipeline.filename_parser import FilenameStrategy, HashTaggedStrategy, get_strategy
from pipeline.object_store import ObjectStore, get_object_store
from pipeline.product_matcher import (
    DirectProductMatcher,
    FuzzyProductMatcher,
    ProductDirectory,
    ProductMatcher,
)
from pipeline.report import PipelineReport
from pipeline.storage_handler import MAX_BATCH_SIZE, StorageHandler
from pipeline.uploader import AssetUploader, AssetVariant, AssignmentGroup, build_base_name

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_BATCH_DELAY = 1.0

DIGEST_PATTERN = re.compile(r"[0-9a-f]{64}")


class IngestionMode(Enum):
    """Naming scheme of the source files and how they map to products."""
    OCCASION = "occasion"
    REINGEST = "reingest"
    FUZZY = "fuzzy"
    RANDOM = "random"


@dataclass
class ProcessingResult:
    """Result of processing a single source file."""
    filepath: Path
    success: bool = False
    skipped: bool = False
    error_kind: str | None = None
    error: str | None = None
    product_id: int | None = None
    product_created: bool = False
    group: AssignmentGroup | None = None
    records: list[ProductImageRecord] = field(default_factory=list)
    uploaded: int = 0
    processing_time: float = 0.0


class ImageProcessor:
    """
    Pipeline processor for batch image ingestion.

    Every collaborator can be injected; defaults are built from the
    environment (see db.database and pipeline.object_store).
    """

    def __init__(
        self,
        mode: IngestionMode = IngestionMode.OCCASION,
        object_store: ObjectStore | None = None,
        product_directory: ProductDirectory | None = None,
        image_repository: ProductImageRepository | None = None,
        session_factory: sessionmaker | None = None,
        profiles: tuple[ResolutionProfile, ...] = DEFAULT_PROFILES,
        primary_profile: str = PRIMARY_PROFILE,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        persist_batch_size: int = MAX_BATCH_SIZE,
        auto_create: bool = False,
        dry_run: bool = False,
        recursive: bool = False,
        rng: random.Random | None = None,
        progress_callback: Callable[[int, int, str], None] | None = None
    ):
        """
        Initialize the image processor.

        Args:
            mode: Ingestion mode.
            object_store: Object store for variants. Defaults to get_object_store().
            product_directory: Product directory. Defaults to ProductRepository.
            image_repository: product_images repository.
            session_factory: Session factory for the default repositories.
            profiles: Ordered resolution profiles.
            primary_profile: Profile marked as the listing image.
            batch_size: Files processed concurrently per batch.
            batch_delay: Seconds to pause between batches.
            persist_batch_size: Rows per persistence batch (max 100).
            auto_create: Create stub products for unknown IDs (direct modes).
            dry_run: Encode but do not upload, create products or persist.
            recursive: Scan subdirectories.
            rng: Random source for allocation and stub products.
            progress_callback: Callback(current, total, filename) for progress.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        for profile in profiles:
            ImageSize(profile.name)  # Stored profiles are a fixed enum
        if primary_profile not in {p.name for p in profiles}:
            raise ValueError(f"Primary profile {primary_profile} is not in the profile set")

        self.mode = mode
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.dry_run = dry_run
        self.primary_profile = primary_profile
        self.progress_callback = progress_callback
        self.rng = rng or random.Random()

        # Initialize components
        self.image_repository = image_repository or ProductImageRepository(session_factory)
        self.product_directory = product_directory or ProductRepository(session_factory)
        self.object_store = object_store or get_object_store()

        self.scanner = FileScanner(recursive=recursive)
        self.duplicate_handler = DuplicateHandler(self.image_repository)
        self.encoder = MultiResolutionEncoder(profiles)
        self.uploader = AssetUploader(self.object_store, dry_run=dry_run)
        self.allocator = AssignmentAllocator(rng=self.rng, primary_profile=primary_profile)
        self.storage = StorageHandler(self.image_repository, batch_size=persist_batch_size)

        self.strategy: FilenameStrategy | None = None
        self.matcher: ProductMatcher | None = None
        if mode != IngestionMode.RANDOM:
            self.strategy = get_strategy(mode.value)
            self.matcher = self._build_matcher(auto_create)

    def _build_matcher(self, auto_create: bool) -> ProductMatcher:
        if self.mode == IngestionMode.FUZZY:
            return FuzzyProductMatcher(self.product_directory)
        return DirectProductMatcher(
            self.product_directory,
            auto_create=auto_create,
            rng=self.rng,
            dry_run=self.dry_run,
        )

    @property
    def profile_names(self) -> list[str]:
        return [p.name for p in self.encoder.profiles]

    # ────────────────────────────────────────────────────────────────────────────
    # Directory ingestion
    # ────────────────────────────────────────────────────────────────────────────

    def process_directory(self, directory: str | Path) -> PipelineReport:
        """
        Ingest every image in a directory.

        Args:
            directory: Source directory.

        Returns:
            PipelineReport for the run.

        Raises:
            SourceUnavailable: If the directory is missing.
            ConfigurationError: If a store rejects the configured credentials.
        """
        directory = Path(directory)
        report = PipelineReport(dry_run=self.dry_run)
        self.duplicate_handler.reset()

        logger.info(f"Starting pipeline for: {directory} (mode: {self.mode.value})")

        # Stage 1: File Discovery
        files = self.scanner.scan(directory)
        report.total_files = len(files)

        if not files:
            logger.info("No images found to process")
            return report.finish()

        records: list[ProductImageRecord] = []
        groups: list[AssignmentGroup] = []

        # Stages 2-5, batch by batch
        total_batches = (len(files) + self.batch_size - 1) // self.batch_size
        done = 0
        for batch_number, start in enumerate(range(0, len(files), self.batch_size), 1):
            batch = files[start:start + self.batch_size]
            logger.info(f"Processing batch {batch_number}/{total_batches} ({len(batch)} files)")

            with ThreadPoolExecutor(max_workers=len(batch)) as executor:
                results = list(executor.map(self.process_single, batch))

            for result in results:
                done += 1
                if self.progress_callback:
                    self.progress_callback(done, len(files), result.filepath.name)
                self._merge_result(report, result)
                records.extend(result.records)
                if result.group is not None and self.mode == IngestionMode.RANDOM:
                    groups.append(result.group)

            if batch_number < total_batches and self.batch_delay > 0:
                time.sleep(self.batch_delay)

        # Stage 6: Randomized allocation
        if self.mode == IngestionMode.RANDOM:
            records = self._allocate(groups, report)

        # Stage 7: Persistence
        self._persist(records, report)

        report.finish()
        logger.info(report.summary())
        return report

    def process_single(self, filepath: str | Path) -> ProcessingResult:
        """
        Run one source file through hashing, matching, encoding and upload.

        Args:
            filepath: Path to the source image.

        Returns:
            ProcessingResult with outcome details. Rows are built but not
            persisted here.

        Raises:
            FatalPipelineError: Configuration failures abort the run.
        """
        start_time = time.time()
        filepath = Path(filepath)
        filename = filepath.name
        result = ProcessingResult(filepath=filepath)
        digest = None
        slot = None

        try:
            data = self._read(filepath)

            # Stage 2: Duplicate Check
            digest = self.duplicate_handler.check(data, filename)

            # Stage 3: Parse and match
            product_id = None
            sequence = 1
            if self.strategy is not None and self.matcher is not None:
                parsed = self.strategy.parse(filename)
                match = self.matcher.match(parsed)
                product_id = match.product_id
                sequence = parsed.sequence
                result.product_id = product_id
                result.product_created = match.created

                self.duplicate_handler.claim_slot(product_id, sequence, digest, filename)
                slot = (product_id, sequence)

            # Stage 4: Encoding
            variants = self.encoder.encode(data, filename)

            # Stage 5: Upload
            group = self.uploader.upload_group(
                variants,
                build_base_name(digest, product_id, sequence),
                digest=digest,
                sequence=sequence,
                filename=filename,
            )
            result.group = group
            result.uploaded = 0 if self.dry_run else len(group.variants)

            if product_id is not None:
                result.records = records_for_group(
                    group, product_id, image_index=sequence, primary_profile=self.primary_profile
                )

            result.success = True
            result.processing_time = time.time() - start_time
            logger.info(
                f"Processed: {filename} "
                f"({'product ' + str(product_id) if product_id is not None else 'unassigned'}, "
                f"{result.processing_time:.2f}s)"
            )

        except FatalPipelineError:
            raise

        except FileSkipped as e:
            result.skipped = True
            result.error_kind = e.kind
            result.error = str(e)
            if e.kind == "DuplicateImage":
                logger.debug(f"Skipping duplicate: {filename} ({e})")
            else:
                logger.warning(f"Skipping {filename}: {e}")

        except FileFailed as e:
            result.error_kind = e.kind
            result.error = str(e)
            logger.error(f"Failed to process {filename}: [{e.kind}] {e}")

        except Exception as e:
            result.error_kind = "UnexpectedError"
            result.error = str(e)
            logger.exception(f"Unexpected error processing {filename}")

        if not result.success:
            self._release_claims(digest, slot)

        result.processing_time = time.time() - start_time
        return result

    def _release_claims(self, digest: str | None, slot: tuple[int, int] | None) -> None:
        """Free the claims of a file that did not make it through."""
        if digest is None:
            return
        self.duplicate_handler.release(digest)
        if slot is not None:
            self.duplicate_handler.release_slot(*slot, digest)

    def _read(self, filepath: Path) -> bytes:
        try:
            data = filepath.read_bytes()
        except OSError as e:
            raise EncodingError(f"Cannot read file: {e}", filename=filepath.name) from e
        if not data:
            raise EncodingError("Empty source file", filename=filepath.name)
        return data

    def _merge_result(self, report: PipelineReport, result: ProcessingResult) -> None:
        """Fold one file result into the report (main thread only)."""
        name = result.filepath.name

        if result.success:
            report.processed += 1
            report.uploaded += result.uploaded
            if result.product_created:
                report.products_created += 1
            return

        kind = result.error_kind
        if kind == "DuplicateImage":
            report.duplicates += 1
            return
        if kind == "UnparsableFilename":
            report.parse_failures += 1
            return
        if kind == "ProductNotFound":
            report.match_failures += 1
            return
        if kind == "ImageSlotTaken":
            report.slot_conflicts += 1
            return

        if kind == "EncodingError":
            report.encode_failures += 1
        elif kind == "UploadError":
            report.upload_failures += 1
        else:
            report.unexpected_failures += 1
        report.add_error(name, kind or "UnexpectedError", result.error or "")

    # ────────────────────────────────────────────────────────────────────────────
    # Allocation and persistence
    # ────────────────────────────────────────────────────────────────────────────

    def _allocate(self, groups: list[AssignmentGroup], report: PipelineReport) -> list[ProductImageRecord]:
        products = self.product_directory.list_active()
        if not products:
            logger.warning("No active products to assign images to")

        allocation = self.allocator.allocate(products, groups)
        assigned = {a.group.key for a in allocation.assignments}
        report.groups_assigned += len(assigned)
        report.groups_unassigned += len(allocation.unassigned)

        for group in allocation.unassigned:
            logger.info(f"Group {group.base_name} left unassigned for a future run")

        return self.allocator.build_records(allocation)

    def _persist(self, records: list[ProductImageRecord], report: PipelineReport) -> None:
        if self.dry_run:
            logger.info(f"[dry-run] Would persist {len(records)} image rows")
            return
        self.storage.persist(records, report)

    # ────────────────────────────────────────────────────────────────────────────
    # Redistribution from the object store
    # ────────────────────────────────────────────────────────────────────────────

    def load_groups_from_store(self) -> list[AssignmentGroup]:
        """
        Rebuild assignment groups from the objects already in storage.

        Objects are grouped by base name across the profile folders; only
        groups with every profile present are returned.

        Returns:
            Complete groups, sorted by base name.
        """
        found: dict[str, dict[str, str]] = {}
        reingest = HashTaggedStrategy()

        for profile in self.profile_names:
            suffix = f"_{profile}.{OUTPUT_EXTENSION}"
            names = self.object_store.list(profile)
            logger.info(f"Found {len(names)} object(s) in {profile}/")

            for name in names:
                if not name.endswith(suffix):
                    logger.warning(f"Unrecognized object name: {profile}/{name}")
                    continue
                found.setdefault(name[:-len(suffix)], {})[profile] = f"{profile}/{name}"

        groups = []
        for base_name in sorted(found):
            paths = found[base_name]
            digest_match = DIGEST_PATTERN.search(base_name)
            parsed = reingest.try_parse(base_name)
            group = AssignmentGroup(
                base_name=base_name,
                variants=tuple(
                    AssetVariant(profile=p, path=path, url=self.object_store.get_public_url(path))
                    for p, path in paths.items()
                ),
                digest=digest_match.group(0) if digest_match else None,
                sequence=parsed.sequence if parsed else 1,
            )
            if not group.is_complete(self.profile_names):
                missing = [p for p in self.profile_names if p not in paths]
                logger.warning(f"Incomplete group {base_name}, missing: {', '.join(missing)}")
                continue
            groups.append(group)

        logger.info(f"{len(groups)} complete group(s), {len(found) - len(groups)} incomplete")
        return groups

    def redistribute(self) -> PipelineReport:
        """
        Randomly reassign the groups already in storage to active products.

        Returns:
            PipelineReport with allocation and persistence counts.
        """
        report = PipelineReport(dry_run=self.dry_run)

        groups = self.load_groups_from_store()
        if not groups:
            logger.warning("No complete image groups found in storage")
            return report.finish()

        records = self._allocate(groups, report)
        self._persist(records, report)

        report.finish()
        logger.info(report.summary())
        return report

    def verify(self) -> list[AuditIssue]:
        """Audit stored galleries for complete profile sets and one primary."""
        issues = self.image_repository.audit(self.profile_names)
        for issue in issues:
            logger.warning(f"Product {issue.product_id}: {issue.problem}")
        return issues

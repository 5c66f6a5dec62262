"""
Batched persistence of product image rows.

Rows are upserted on (product_id, image_index, size) in fixed-size
batches. Each batch is its own transaction: a failed batch is logged with
its index and reported, and later batches still run.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from db.operations import ProductImageRepository, size_from_name
from pipeline.allocator import ProductImageRecord
from pipeline.errors import PersistenceError
from pipeline.report import PipelineReport

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 100


def dedupe_records(records: list[ProductImageRecord]) -> list[ProductImageRecord]:
    """Keep the last record per natural key."""
    by_key: dict[tuple, ProductImageRecord] = {}
    for record in records:
        by_key.pop(record.natural_key, None)
        by_key[record.natural_key] = record
    return list(by_key.values())


def record_to_row(record: ProductImageRecord) -> dict:
    """Column values for one product_images row."""
    return {
        "product_id": record.product_id,
        "image_index": record.image_index,
        "size": size_from_name(record.profile),
        "url": record.url,
        "is_primary": record.is_primary,
        "file_hash": record.file_hash,
        "mime_type": record.mime_type,
    }


class StorageHandler:
    """
    Writes ProductImageRecords to the relational store in bounded batches.
    """

    def __init__(
        self,
        repository: ProductImageRepository | None = None,
        batch_size: int = MAX_BATCH_SIZE,
    ):
        """
        Initialize storage handler.

        Args:
            repository: ProductImageRepository instance. If None, creates a new one.
            batch_size: Rows per batch, 1..MAX_BATCH_SIZE.
        """
        if not 1 <= batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")

        self.repository = repository or ProductImageRepository()
        self.batch_size = batch_size

    def persist(
        self,
        records: list[ProductImageRecord],
        report: PipelineReport | None = None,
    ) -> PipelineReport:
        """
        Upsert all records.

        Args:
            records: Rows for the whole run.
            report: Report to update. A new one is created if omitted.

        Returns:
            The updated report.
        """
        report = report or PipelineReport()
        rows = [record_to_row(r) for r in dedupe_records(records)]

        if not rows:
            logger.info("No image rows to persist")
            return report

        total_batches = (len(rows) + self.batch_size - 1) // self.batch_size
        logger.info(f"Persisting {len(rows)} rows in {total_batches} batch(es)")

        for batch_index, start in enumerate(range(0, len(rows), self.batch_size), 1):
            batch = rows[start:start + self.batch_size]
            try:
                report.persisted_rows += self._write_batch(batch_index, batch)
            except PersistenceError as e:
                logger.error(f"Batch {e.batch_index}/{total_batches} failed ({e.row_count} rows): {e}")
                report.persist_failures += 1
                report.add_error(f"batch {e.batch_index}", e.kind, str(e))

        return report

    def _write_batch(self, batch_index: int, batch: list[dict]) -> int:
        try:
            written = self.repository.upsert_many(batch)
        except SQLAlchemyError as e:
            raise PersistenceError(str(getattr(e, "orig", None) or e), batch_index, len(batch)) from e

        logger.debug(f"Batch {batch_index} written ({written} rows)")
        return written

"""Tests for pipeline.storage_handler."""

import pytest
from sqlalchemy.exc import OperationalError

from db.operations import ProductImageRepository
from pipeline.allocator import ProductImageRecord
from pipeline.report import PipelineReport
from pipeline.storage_handler import MAX_BATCH_SIZE, StorageHandler, dedupe_records

PROFILES = ["thumb", "small", "medium", "large"]


def group_records(product_id, image_index=1, url_prefix="https://cdn.test", digest="d" * 64):
    return [
        ProductImageRecord(
            product_id=product_id,
            image_index=image_index,
            profile=p,
            url=f"{url_prefix}/{p}/{product_id}_{image_index}.webp",
            is_primary=(image_index == 1 and p == "thumb"),
            file_hash=digest,
        )
        for p in PROFILES
    ]


class RecordingRepository(ProductImageRepository):
    """Repository that records batch sizes and can fail chosen calls."""

    def __init__(self, session_factory, fail_calls=()):
        super().__init__(session_factory)
        self.batch_sizes = []
        self.fail_calls = set(fail_calls)

    def upsert_many(self, rows):
        self.batch_sizes.append(len(rows))
        if len(self.batch_sizes) in self.fail_calls:
            raise OperationalError("INSERT INTO product_images", {}, Exception("database is locked"))
        return super().upsert_many(rows)


def test_persist_writes_rows(image_repository, add_products):
    add_products((1, "Ramo"))

    report = StorageHandler(image_repository).persist(group_records(1))

    assert report.persisted_rows == 4
    rows = image_repository.get_by_product(1)
    assert sorted(r.size.value for r in rows) == sorted(PROFILES)
    assert image_repository.get_primary(1).size.value == "thumb"
    assert all(r.mime_type == "image/webp" for r in rows)


def test_upsert_is_idempotent(image_repository, add_products):
    add_products((1, "Ramo"))
    handler = StorageHandler(image_repository)

    handler.persist(group_records(1))
    handler.persist(group_records(1))
    handler.persist(group_records(1, url_prefix="https://new.test"))

    rows = image_repository.get_by_product(1)
    assert image_repository.count() == 4
    assert all(r.url.startswith("https://new.test/") for r in rows)


def test_rows_are_written_in_bounded_batches(session_factory, add_products):
    add_products(*[(i, f"Product {i}") for i in range(1, 64)])
    repository = RecordingRepository(session_factory)
    records = [r for i in range(1, 64) for r in group_records(i)]

    report = StorageHandler(repository).persist(records)

    assert repository.batch_sizes == [100, 100, 52]
    assert report.persisted_rows == 252
    assert repository.count() == 252


def test_failed_batch_does_not_block_others(session_factory, add_products):
    add_products(*[(i, f"Product {i}") for i in range(1, 7)])
    repository = RecordingRepository(session_factory, fail_calls={2})
    records = [r for i in range(1, 7) for r in group_records(i)]

    report = StorageHandler(repository, batch_size=8).persist(records)

    assert repository.batch_sizes == [8, 8, 8]
    assert report.persist_failures == 1
    assert report.persisted_rows == 16
    assert report.errors[0].file == "batch 2"
    assert report.errors[0].kind == "PersistenceError"
    assert "locked" in report.errors[0].message
    assert repository.count() == 16
    # Rows of the failed batch (products 3 and 4) are absent
    assert repository.count(product_id=3) == 0
    assert repository.count(product_id=5) == 4


def test_persist_updates_given_report(image_repository, add_products):
    add_products((2, "Caja"))
    report = PipelineReport(total_files=1)

    result = StorageHandler(image_repository).persist(group_records(2), report)

    assert result is report
    assert report.persisted_rows == 4


def test_nothing_to_persist(image_repository):
    assert StorageHandler(image_repository).persist([]).persisted_rows == 0


def test_dedupe_records_keeps_last():
    old = group_records(1, url_prefix="https://old.test")
    new = group_records(1, url_prefix="https://new.test")

    deduped = dedupe_records(old + new)

    assert len(deduped) == 4
    assert all(r.url.startswith("https://new.test/") for r in deduped)


@pytest.mark.parametrize("batch_size", [0, MAX_BATCH_SIZE + 1])
def test_batch_size_is_bounded(image_repository, batch_size):
    with pytest.raises(ValueError):
        StorageHandler(image_repository, batch_size=batch_size)

"""Tests for pipeline.duplicate_handler."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from db.models import ImageSize
from pipeline.duplicate_handler import DuplicateHandler, calculate_hash
from pipeline.errors import DuplicateImage, ImageSlotTaken

ABC_SHA256 = "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
OTHER_SHA256 = "0" * 64


def test_calculate_hash_is_sha256_hex():
    assert calculate_hash(b"abc") == ABC_SHA256
    assert calculate_hash(b"abc") == calculate_hash(b"abc")
    assert calculate_hash(b"abd") != ABC_SHA256


def test_check_returns_digest(image_repository):
    handler = DuplicateHandler(image_repository)

    assert handler.check(b"abc", "a.png") == ABC_SHA256


def test_same_bytes_in_one_run_are_duplicates(image_repository):
    handler = DuplicateHandler(image_repository)
    handler.check(b"abc", "a.png")

    with pytest.raises(DuplicateImage) as exc_info:
        handler.check(b"abc", "b.png")

    assert exc_info.value.filename == "b.png"
    assert exc_info.value.digest == ABC_SHA256


def store_thumb(image_repository, product_id, image_index, file_hash):
    image_repository.upsert_many([{
        "product_id": product_id,
        "image_index": image_index,
        "size": ImageSize.THUMB,
        "url": f"https://cdn.test/thumb/{file_hash[:8]}.webp",
        "is_primary": image_index == 1,
        "file_hash": file_hash,
        "mime_type": "image/webp",
    }])


def test_stored_digest_is_duplicate(image_repository, add_products):
    add_products((1, "Ramo"))
    store_thumb(image_repository, 1, 1, ABC_SHA256)
    handler = DuplicateHandler(image_repository)

    with pytest.raises(DuplicateImage, match="already ingested"):
        handler.check(b"abc", "a.png")


def test_reset_forgets_claims(image_repository):
    handler = DuplicateHandler(image_repository)
    handler.check(b"abc", "a.png")
    handler.reset()

    assert handler.check(b"abc", "a.png") == ABC_SHA256


def test_concurrent_claims_have_single_winner(image_repository):
    handler = DuplicateHandler(image_repository)

    def attempt(i):
        try:
            handler.check(b"same bytes", f"{i}.png")
            return True
        except DuplicateImage:
            return False

    with ThreadPoolExecutor(max_workers=8) as executor:
        outcomes = list(executor.map(attempt, range(16)))

    assert outcomes.count(True) == 1


def test_released_digest_can_be_claimed_again(image_repository):
    handler = DuplicateHandler(image_repository)
    digest = handler.check(b"abc", "a.png")
    handler.release(digest)

    assert handler.check(b"abc", "b.png") == ABC_SHA256


def test_slot_belongs_to_first_digest(image_repository):
    handler = DuplicateHandler(image_repository)
    handler.claim_slot(1, 1, ABC_SHA256, "a.png")
    handler.claim_slot(1, 1, ABC_SHA256, "a.png")
    handler.claim_slot(1, 2, OTHER_SHA256, "b.png")

    with pytest.raises(ImageSlotTaken) as exc_info:
        handler.claim_slot(1, 1, OTHER_SHA256, "c.png")

    assert exc_info.value.filename == "c.png"


def test_released_slot_can_be_claimed(image_repository):
    handler = DuplicateHandler(image_repository)
    handler.claim_slot(1, 1, ABC_SHA256, "a.png")
    handler.release_slot(1, 1, OTHER_SHA256)

    with pytest.raises(ImageSlotTaken):
        handler.claim_slot(1, 1, OTHER_SHA256, "b.png")

    handler.release_slot(1, 1, ABC_SHA256)
    handler.claim_slot(1, 1, OTHER_SHA256, "b.png")


def test_slot_holding_another_stored_image_is_taken(image_repository, add_products):
    add_products((1, "Ramo"))
    store_thumb(image_repository, 1, 1, OTHER_SHA256)
    handler = DuplicateHandler(image_repository)

    with pytest.raises(ImageSlotTaken, match="already holds"):
        handler.claim_slot(1, 1, ABC_SHA256, "a.png")

    handler.claim_slot(1, 1, OTHER_SHA256, "a.png")
    handler.claim_slot(1, 2, ABC_SHA256, "b.png")


def test_concurrent_slot_claims_have_single_winner(image_repository):
    handler = DuplicateHandler(image_repository)

    def attempt(i):
        try:
            handler.claim_slot(1, 1, f"{i:064d}", f"{i}.png")
            return True
        except ImageSlotTaken:
            return False

    with ThreadPoolExecutor(max_workers=8) as executor:
        outcomes = list(executor.map(attempt, range(16)))

    assert outcomes.count(True) == 1

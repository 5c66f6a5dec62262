"""Tests for pipeline.uploader and the local object store."""

import pytest

from pipeline.encoder import MultiResolutionEncoder
from pipeline.errors import UploadError
from pipeline.object_store import LocalObjectStore, ObjectStoreError
from pipeline.uploader import AssetUploader, build_base_name, build_object_path
from tests.conftest import InMemoryObjectStore, make_image_bytes

DIGEST = "ab" * 32


@pytest.fixture(scope="module")
def variants():
    return MultiResolutionEncoder().encode(make_image_bytes(), "photo.png")


def test_build_object_path():
    assert build_object_path("thumb", "image_abc") == "thumb/image_abc_thumb.webp"


def test_build_base_name():
    assert build_base_name(DIGEST) == f"image_{DIGEST}"
    assert build_base_name(DIGEST, product_id=12, sequence=2) == f"product_12_2_{DIGEST}"


def test_upload_group(object_store, variants):
    group = AssetUploader(object_store).upload_group(
        variants, f"image_{DIGEST}", digest=DIGEST, filename="photo.png"
    )

    assert [v.profile for v in group.variants] == ["thumb", "small", "medium", "large"]
    assert group.digest == DIGEST
    assert group.key == f"{DIGEST}:1"
    assert group.is_complete(["thumb", "small", "medium", "large"])
    assert sorted(object_store.objects) == sorted(
        f"{p}/image_{DIGEST}_{p}.webp" for p in ["thumb", "small", "medium", "large"]
    )
    assert set(object_store.content_types.values()) == {"image/webp"}

    thumb = group.variant("thumb")
    assert thumb.url == f"https://cdn.test/product-images/thumb/image_{DIGEST}_thumb.webp"
    assert thumb.byte_size == len(object_store.objects[thumb.path])


def test_reupload_overwrites(object_store, variants):
    uploader = AssetUploader(object_store)
    uploader.upload_group(variants, "image_x")
    uploader.upload_group(variants, "image_x")

    assert len(object_store.objects) == 4
    assert len(object_store.upload_calls) == 8


def test_failed_variant_aborts_group(variants):
    store = InMemoryObjectStore(fail_on=lambda path: path.startswith("large/"))

    with pytest.raises(UploadError) as exc_info:
        AssetUploader(store).upload_group(variants, "image_x", filename="photo.png")

    assert exc_info.value.filename == "photo.png"
    assert "large" in str(exc_info.value)
    assert sorted(p.split("/")[0] for p in store.objects) == ["medium", "small", "thumb"]


def test_dry_run_uploads_nothing(object_store, variants):
    group = AssetUploader(object_store, dry_run=True).upload_group(variants, "image_x")

    assert object_store.objects == {}
    assert len(group.variants) == 4
    assert group.variant("large").url.endswith("large/image_x_large.webp")


class TestLocalObjectStore:
    def test_upload_and_list(self, tmp_path):
        store = LocalObjectStore(tmp_path / "bucket", public_url="http://localhost/img")

        store.upload("thumb/a_thumb.webp", b"one", "image/webp")
        store.upload("thumb/a_thumb.webp", b"two", "image/webp")
        store.upload("thumb/b_thumb.webp", b"three", "image/webp")

        assert (tmp_path / "bucket" / "thumb" / "a_thumb.webp").read_bytes() == b"two"
        assert store.list("thumb") == ["a_thumb.webp", "b_thumb.webp"]
        assert store.list("large") == []
        assert store.get_public_url("thumb/a_thumb.webp") == "http://localhost/img/thumb/a_thumb.webp"

    def test_no_upsert_rejects_existing(self, tmp_path):
        store = LocalObjectStore(tmp_path)
        store.upload("thumb/a.webp", b"one", "image/webp")

        with pytest.raises(ObjectStoreError):
            store.upload("thumb/a.webp", b"two", "image/webp", upsert=False)

    def test_rejects_path_traversal(self, tmp_path):
        store = LocalObjectStore(tmp_path / "bucket")

        with pytest.raises(ObjectStoreError):
            store.upload("../outside.webp", b"x", "image/webp")

    def test_default_public_url_is_file_uri(self, tmp_path, monkeypatch):
        monkeypatch.delenv("STORAGE_PUBLIC_URL", raising=False)
        store = LocalObjectStore(tmp_path)

        assert store.get_public_url("thumb/a.webp").startswith("file://")

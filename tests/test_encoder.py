"""Tests for pipeline.encoder."""

import io

import pytest
from PIL import Image

from pipeline.encoder import DEFAULT_PROFILES, MultiResolutionEncoder, ResolutionProfile
from pipeline.errors import EncodingError
from tests.conftest import make_image_bytes


def decode(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


def test_encodes_every_profile_to_exact_size():
    source = make_image_bytes(1600, 900)

    variants = MultiResolutionEncoder().encode(source, "wide.png")

    assert [v.profile.name for v in variants] == ["thumb", "small", "medium", "large"]
    for variant, profile in zip(variants, DEFAULT_PROFILES):
        image = decode(variant.data)
        assert image.format == "WEBP"
        assert image.size == (profile.width, profile.height)
        assert (variant.width, variant.height) == (profile.width, profile.height)


def test_square_source_is_cropped_not_distorted():
    profiles = (ResolutionProfile("banner", 200, 100, 80),)
    # Left half red, right half blue; the center crop keeps both halves.
    image = Image.new("RGB", (400, 400), (255, 0, 0))
    image.paste((0, 0, 255), (200, 0, 400, 400))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")

    [variant] = MultiResolutionEncoder(profiles).encode(buffer.getvalue())
    result = decode(variant.data).convert("RGB")

    assert result.size == (200, 100)
    left = result.getpixel((20, 50))
    right = result.getpixel((180, 50))
    assert left[0] > 200 and left[2] < 60
    assert right[2] > 200 and right[0] < 60


def test_transparent_source_is_flattened():
    source = make_image_bytes(120, 80, mode="RGBA")

    variants = MultiResolutionEncoder().encode(source, "alpha.png")

    assert all(decode(v.data).mode == "RGB" for v in variants)


def test_jpeg_source():
    source = make_image_bytes(300, 500, fmt="JPEG")

    variants = MultiResolutionEncoder().encode(source, "tall.jpg")

    assert len(variants) == len(DEFAULT_PROFILES)


def test_higher_quality_profile_is_larger():
    source = make_image_bytes(400, 400)
    profiles = (
        ResolutionProfile("low", 300, 300, 10),
        ResolutionProfile("high", 300, 300, 95),
    )

    low, high = MultiResolutionEncoder(profiles).encode(source)

    assert len(low.data) < len(high.data)


def test_empty_source_fails():
    with pytest.raises(EncodingError, match="Empty"):
        MultiResolutionEncoder().encode(b"", "empty.png")


def test_undecodable_source_fails():
    with pytest.raises(EncodingError) as exc_info:
        MultiResolutionEncoder().encode(b"not an image at all", "broken.png")

    assert exc_info.value.filename == "broken.png"


def test_profile_failure_discards_all_outputs(monkeypatch):
    encoder = MultiResolutionEncoder()
    encode_profile = encoder._encode_profile

    def fail_large(image, profile):
        if profile.name == "large":
            raise OSError("encoder crashed")
        return encode_profile(image, profile)

    monkeypatch.setattr(encoder, "_encode_profile", fail_large)

    with pytest.raises(EncodingError, match="large"):
        encoder.encode(make_image_bytes(), "photo.png")


def test_profile_names_must_be_unique():
    with pytest.raises(ValueError):
        MultiResolutionEncoder((
            ResolutionProfile("thumb", 150, 150, 75),
            ResolutionProfile("thumb", 300, 300, 80),
        ))

    with pytest.raises(ValueError):
        MultiResolutionEncoder(())

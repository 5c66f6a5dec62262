"""
Multi-resolution encoding module for the pipeline.

Transcodes one source image into every resolution profile. Each output is
center-cropped to the exact profile dimensions ("cover" fit, no distortion)
and encoded as lossy WebP at the profile quality.

Encoding is all-or-nothing: if any profile fails, no output is returned.
"""

import io
import logging
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError

from pipeline.errors import EncodingError

logger = logging.getLogger(__name__)

OUTPUT_FORMAT = "WEBP"
OUTPUT_EXTENSION = "webp"
OUTPUT_MIME_TYPE = "image/webp"
WEBP_METHOD = 4  # Speed/size trade-off


@dataclass(frozen=True)
class ResolutionProfile:
    """A named output size/quality preset."""
    name: str
    width: int
    height: int
    quality: int


# Ordered, smallest first. The first profile is the listing (primary) size.
DEFAULT_PROFILES: tuple[ResolutionProfile, ...] = (
    ResolutionProfile("thumb", 150, 150, 75),
    ResolutionProfile("small", 300, 300, 80),
    ResolutionProfile("medium", 600, 600, 85),
    ResolutionProfile("large", 1200, 1200, 90),
)

PRIMARY_PROFILE = "thumb"


@dataclass(frozen=True)
class EncodedVariant:
    """One encoded output buffer."""
    profile: ResolutionProfile
    data: bytes
    width: int
    height: int


class MultiResolutionEncoder:
    """
    Encodes a source image into every resolution profile.

    Attributes:
        profiles: Ordered profile list.
    """

    def __init__(self, profiles: tuple[ResolutionProfile, ...] | list[ResolutionProfile] = DEFAULT_PROFILES):
        """
        Initialize the encoder.

        Args:
            profiles: Ordered profile list. Names must be unique.
        """
        names = [p.name for p in profiles]
        if not profiles or len(set(names)) != len(names):
            raise ValueError(f"Profiles must be a non-empty list of unique names: {names}")

        self.profiles = tuple(profiles)

    def encode(self, data: bytes, filename: str | None = None) -> list[EncodedVariant]:
        """
        Encode raw image bytes into one buffer per profile.

        Args:
            data: Source image bytes.
            filename: Source filename, for error reporting.

        Returns:
            One EncodedVariant per profile, in profile order.

        Raises:
            EncodingError: If the source cannot be decoded or any profile
                          fails to encode.
        """
        if not data:
            raise EncodingError("Empty source file", filename=filename)

        try:
            with Image.open(io.BytesIO(data)) as source:
                source.load()
                image = self._prepare(source)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise EncodingError(f"Cannot decode image: {e}", filename=filename) from e

        variants = []
        for profile in self.profiles:
            try:
                variants.append(self._encode_profile(image, profile))
            except (OSError, ValueError) as e:
                raise EncodingError(
                    f"Failed to encode profile {profile.name}: {e}",
                    filename=filename,
                ) from e

        logger.debug(
            f"Encoded {filename or 'image'} ({image.width}x{image.height}) "
            f"into {len(variants)} profiles"
        )
        return variants

    def _prepare(self, source: Image.Image) -> Image.Image:
        """Apply EXIF orientation and flatten to RGB on white."""
        image = ImageOps.exif_transpose(source)

        if image.mode in ("RGBA", "LA", "P"):
            image = image.convert("RGBA")
            background = Image.new("RGB", image.size, (255, 255, 255))
            background.paste(image, mask=image.split()[-1])
            return background

        if image.mode != "RGB":
            return image.convert("RGB")

        return image

    def _encode_profile(self, image: Image.Image, profile: ResolutionProfile) -> EncodedVariant:
        """Cover-fit and encode one profile."""
        fitted = ImageOps.fit(
            image,
            (profile.width, profile.height),
            method=Image.Resampling.LANCZOS,
            centering=(0.5, 0.5),
        )

        buffer = io.BytesIO()
        fitted.save(buffer, format=OUTPUT_FORMAT, quality=profile.quality, method=WEBP_METHOD)

        return EncodedVariant(
            profile=profile,
            data=buffer.getvalue(),
            width=fitted.width,
            height=fitted.height,
        )

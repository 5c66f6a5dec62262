"""
Filename parsing strategies.

Each ingestion mode names its source files differently. Every naming
scheme has its own FilenameStrategy; strategies never fall back to each
other.

- OccasionTaggedStrategy:   <tag>.<productId>.<sequence>.<ext>
                            e.g. cumpleanos.12.1.png
- HashTaggedStrategy:       product_<productId>_<sequence>[_<sha256>][_<profile>].<ext>
                            e.g. product_12_1_17e2...9881.webp
- DescriptiveFilenameStrategy: free-form product name with optional -<n> suffix
                            e.g. Ramo-de-Rosas-2.jpg
"""

import logging
import re
import unicodedata
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from pipeline.errors import UnparsableFilename

logger = logging.getLogger(__name__)

# Occasion tags seen in source filenames, mapped to occasion slugs.
# None means the tag is known but has no catalogue occasion.
OCCASION_MAPPING: dict[str, str | None] = {
    "aniversario-de-bodas": "aniversario",
    "apocalisis": None,
    "cuarto-bebe": None,
    "cumpleanos": "cumpleanos",
    "dia-de-lamadre": "dia-de-la-madre",
    "dia-de-la-madre": "dia-de-la-madre",
    "ramo-amistad": None,
    "ramo-de-novia": "bodas",
    "ramo-sobremesa": None,
}


@dataclass(frozen=True)
class ParsedFilename:
    """Structured metadata extracted from a filename."""
    filename: str
    reference: str
    sequence: int = 1
    tag: str | None = None
    digest: str | None = None

    @property
    def product_id(self) -> int | None:
        """Reference as a product ID, when it is numeric."""
        return int(self.reference) if self.reference.isdigit() else None


def strip_diacritics(value: str) -> str:
    """Remove combining marks (á -> a, ñ -> n)."""
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def normalize_tag(tag: str) -> str:
    """Lower-case, strip diacritics and hyphenate an occasion tag."""
    value = strip_diacritics(tag).lower().strip()
    return re.sub(r"[\s_]+", "-", value)


def occasion_for_tag(tag: str | None) -> str | None:
    """Map a raw occasion tag to its occasion slug, if any."""
    if not tag:
        return None
    return OCCASION_MAPPING.get(normalize_tag(tag))


class FilenameStrategy(ABC):
    """Capability interface: turn a filename into ParsedFilename."""

    name = "abstract"

    @abstractmethod
    def parse(self, filename: str) -> ParsedFilename:
        """
        Parse a filename.

        Raises:
            UnparsableFilename: If the name does not follow this scheme.
        """

    def try_parse(self, filename: str) -> ParsedFilename | None:
        """Parse, returning None instead of raising."""
        try:
            return self.parse(filename)
        except UnparsableFilename:
            return None


class OccasionTaggedStrategy(FilenameStrategy):
    """<tag>.<productId>.<sequence>.<ext>"""

    name = "occasion"

    def parse(self, filename: str) -> ParsedFilename:
        stem = Path(filename).stem
        parts = stem.split(".")

        if len(parts) != 3:
            raise UnparsableFilename(
                f"Expected <tag>.<productId>.<sequence>.<ext>, got {filename}",
                filename=filename,
            )

        tag, reference, sequence = (p.strip() for p in parts)
        if not tag or not reference.isdigit() or not sequence.isdigit() or int(sequence) < 1:
            raise UnparsableFilename(f"Invalid IDs in {filename}", filename=filename)

        return ParsedFilename(
            filename=filename,
            reference=str(int(reference)),
            sequence=int(sequence),
            tag=tag,
        )


class HashTaggedStrategy(FilenameStrategy):
    """product_<productId>_<sequence>[_<sha256>][_<profile>].<ext>"""

    name = "reingest"

    PATTERN = re.compile(
        r"^product_(?P<reference>\d+)_(?P<sequence>\d+)"
        r"(?:_(?P<digest>[0-9a-f]{64}))?"
        r"(?:_(?P<profile>[a-z]+))?$"
    )

    def parse(self, filename: str) -> ParsedFilename:
        match = self.PATTERN.match(Path(filename).stem)
        if not match or int(match["sequence"]) < 1:
            raise UnparsableFilename(
                f"Expected product_<productId>_<sequence>_<hash>.<ext>, got {filename}",
                filename=filename,
            )

        return ParsedFilename(
            filename=filename,
            reference=str(int(match["reference"])),
            sequence=int(match["sequence"]),
            digest=match["digest"],
        )


class DescriptiveFilenameStrategy(FilenameStrategy):
    """Free-form product name, optional trailing -<sequence>."""

    name = "fuzzy"

    SEQUENCE_SUFFIX = re.compile(r"[-_ ](\d+)$")

    def parse(self, filename: str) -> ParsedFilename:
        stem = Path(filename).stem.strip()

        sequence = 1
        match = self.SEQUENCE_SUFFIX.search(stem)
        if match:
            sequence = max(int(match.group(1)), 1)
            stem = stem[:match.start()]

        reference = re.sub(r"[-_\s]+", " ", stem).strip()
        if not re.search(r"\w", reference):
            raise UnparsableFilename(f"No product name in {filename}", filename=filename)

        return ParsedFilename(filename=filename, reference=reference, sequence=sequence)


STRATEGIES: dict[str, type[FilenameStrategy]] = {
    OccasionTaggedStrategy.name: OccasionTaggedStrategy,
    HashTaggedStrategy.name: HashTaggedStrategy,
    DescriptiveFilenameStrategy.name: DescriptiveFilenameStrategy,
}


def get_strategy(name: str) -> FilenameStrategy:
    """Get a strategy instance by ingestion mode name."""
    try:
        return STRATEGIES[name]()
    except KeyError:
        raise ValueError(
            f"Unknown filename strategy: {name}. Valid: {sorted(STRATEGIES)}"
        ) from None

"""
Product matching module.

Resolves a parsed filename to a product ID:
- DirectProductMatcher: the filename reference is the product ID. Missing
  products can be created as stubs in auto-creation mode.
- FuzzyProductMatcher: the reference is a free-form name, searched by
  case-insensitive substring on product name or slug.
"""

import logging
import random
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

from db.operations import ProductStub
from pipeline.errors import ProductNotFound
from pipeline.filename_parser import ParsedFilename, normalize_tag, occasion_for_tag, strip_diacritics

logger = logging.getLogger(__name__)

MIN_WORD_LENGTH = 4


class ProductDirectory(Protocol):
    """Read/write access to product records (see db.operations.ProductRepository)."""

    def find_by_id(self, product_id: int) -> Any | None: ...

    def search(self, term: str) -> list[Any]: ...

    def create(self, stub: ProductStub) -> Any: ...

    def list_active(self) -> list[Any]: ...

    def link_occasion(self, product_id: int, occasion_slug: str) -> bool: ...


@dataclass(frozen=True)
class MatchResult:
    """Resolved product for one source file."""
    product_id: int
    product_name: str
    created: bool = False


def normalize_search_term(value: str) -> str:
    """
    Turn a filename reference into a search term.

    Strips diacritics and punctuation, collapses whitespace.
    "Ramo_de-Rosas (rojas)!" -> "Ramo de Rosas rojas"
    """
    value = strip_diacritics(value)
    value = re.sub(r"[-_]+", " ", value)
    value = re.sub(r"[^\w\s]", "", value)
    return re.sub(r"\s+", " ", value).strip()


class ProductMatcher(ABC):
    """Strategy interface for resolving files to products."""

    def __init__(self, directory: ProductDirectory):
        self.directory = directory

    @abstractmethod
    def match(self, parsed: ParsedFilename) -> MatchResult:
        """
        Resolve a parsed filename to a product.

        Raises:
            ProductNotFound: If no product can be resolved.
        """


class DirectProductMatcher(ProductMatcher):
    """The filename reference is the product ID."""

    def __init__(
        self,
        directory: ProductDirectory,
        auto_create: bool = False,
        rng: random.Random | None = None,
        dry_run: bool = False,
    ):
        """
        Initialize direct matcher.

        Args:
            directory: Product directory.
            auto_create: Create a stub product when the ID does not exist.
            rng: Random source for stub price/stock/featured.
            dry_run: Never write to the directory.
        """
        super().__init__(directory)
        self.auto_create = auto_create
        self.rng = rng or random.Random()
        self.dry_run = dry_run

    def match(self, parsed: ParsedFilename) -> MatchResult:
        product_id = parsed.product_id
        if product_id is None:
            raise ProductNotFound(
                f"Reference '{parsed.reference}' is not a product ID",
                filename=parsed.filename,
            )

        product = self.directory.find_by_id(product_id)
        created = False

        if product is None:
            if not self.auto_create:
                raise ProductNotFound(f"Product {product_id} does not exist", filename=parsed.filename)

            stub = self.build_stub(product_id, parsed.tag)
            if self.dry_run:
                logger.info(f"[dry-run] Would create product {product_id}: {stub.name}")
                return MatchResult(product_id, stub.name, created=True)

            product = self.directory.create(stub)
            created = True

        self._link_occasion(product.id, parsed.tag)
        return MatchResult(product.id, product.name, created=created)

    def build_stub(self, product_id: int, tag: str | None) -> ProductStub:
        """Build stub values for a missing product."""
        label = (tag or "producto").replace("-", " ").replace("_", " ").strip()
        name = f"{label} - Arreglo {product_id}"
        price = round(self.rng.random() * 80 + 20, 2)

        return ProductStub(
            id=product_id,
            name=name,
            slug=f"{normalize_tag(label)}-arreglo-{product_id}",
            description=(
                f"Hermoso arreglo floral para {label.lower()}. "
                "Elaborado con flores frescas y de la mejor calidad."
            ),
            price_usd=Decimal(str(price)),
            stock=self.rng.randint(5, 24),
            featured=self.rng.random() < 0.3,
        )

    def _link_occasion(self, product_id: int, tag: str | None) -> None:
        occasion = occasion_for_tag(tag)
        if occasion is None or self.dry_run:
            return
        self.directory.link_occasion(product_id, occasion)


class FuzzyProductMatcher(ProductMatcher):
    """
    Substring search on product name or slug.

    Tries the full normalized reference first, then each word longer than
    three characters. The first product returned by the directory wins.
    """

    def match(self, parsed: ParsedFilename) -> MatchResult:
        term = normalize_search_term(parsed.reference)
        if not term:
            raise ProductNotFound("Empty search term", filename=parsed.filename)

        for candidate in self._candidates(term):
            products = self.directory.search(candidate)
            if products:
                product = products[0]
                logger.debug(f"Matched '{parsed.filename}' to product {product.id} via '{candidate}'")
                return MatchResult(product.id, product.name)

        raise ProductNotFound(f"No product matches '{term}'", filename=parsed.filename)

    def _candidates(self, term: str) -> list[str]:
        words = [w for w in term.split(" ") if len(w) >= MIN_WORD_LENGTH]
        return [term] + [w for w in words if w != term]

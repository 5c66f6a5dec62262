"""
Database operations for the product image pipeline.

Provides:
- ProductImageRepository: digest lookups, batched upserts, audits
- ProductRepository: the SQL-backed product directory (lookup, search,
  stub creation, occasion linking)
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import Insert, func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from db.database import session_scope
from db.models import ImageSize, Occasion, Product, ProductImage, ProductOccasion

logger = logging.getLogger(__name__)

NATURAL_KEY = ("product_id", "image_index", "size")
UPSERT_COLUMNS = ("url", "is_primary", "file_hash", "mime_type")


@dataclass
class ProductStub:
    """Values for a product created in auto-creation mode."""
    id: int
    name: str
    slug: str
    description: str
    price_usd: Decimal
    stock: int
    featured: bool = False
    active: bool = True


@dataclass
class AuditIssue:
    """A product whose image rows break the gallery invariants."""
    product_id: int
    problem: str


def _insert_for(session: Session, table) -> Insert:
    """Dialect-specific INSERT that supports ON CONFLICT."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upsert not supported for dialect: {dialect}")


class ProductImageRepository:
    """
    Repository for product_images operations.

    Each method opens its own session through session_scope(), using the
    injected session factory when one is given.
    """

    def __init__(self, session_factory: sessionmaker | None = None):
        self._session_factory = session_factory

    def _scope(self):
        return session_scope(self._session_factory)

    # ────────────────────────────────────────────────────────────────────────────
    # Read Operations
    # ────────────────────────────────────────────────────────────────────────────

    def exists_by_hash(self, file_hash: str) -> bool:
        """
        Check if any image row carries this content digest.

        Args:
            file_hash: SHA256 hex digest of the source bytes.

        Returns:
            True if the digest was already ingested.
        """
        stmt = select(ProductImage.id).where(ProductImage.file_hash == file_hash).limit(1)
        with self._scope() as session:
            return session.execute(stmt).first() is not None

    def hashes_at(self, product_id: int, image_index: int) -> set[str | None]:
        """Content digests stored at one image index of a product (empty if free)."""
        stmt = select(ProductImage.file_hash).where(
            ProductImage.product_id == product_id,
            ProductImage.image_index == image_index,
        )
        with self._scope() as session:
            return set(session.execute(stmt).scalars())

    def get_by_product(self, product_id: int) -> list[ProductImage]:
        """Get all image rows of a product, ordered by index then size."""
        stmt = (
            select(ProductImage)
            .where(ProductImage.product_id == product_id)
            .order_by(ProductImage.image_index, ProductImage.size)
        )
        with self._scope() as session:
            return list(session.execute(stmt).scalars().all())

    def get_primary(self, product_id: int) -> ProductImage | None:
        """Get the primary image row of a product, if any."""
        stmt = select(ProductImage).where(
            ProductImage.product_id == product_id,
            ProductImage.is_primary.is_(True),
        )
        with self._scope() as session:
            return session.execute(stmt).scalar_one_or_none()

    def count(self, product_id: int | None = None) -> int:
        """Count image rows, optionally for a single product."""
        stmt = select(func.count(ProductImage.id))
        if product_id is not None:
            stmt = stmt.where(ProductImage.product_id == product_id)
        with self._scope() as session:
            return session.execute(stmt).scalar_one()

    # ────────────────────────────────────────────────────────────────────────────
    # Write Operations
    # ────────────────────────────────────────────────────────────────────────────

    def upsert_many(self, rows: list[dict]) -> int:
        """
        Insert or update rows on the natural key (product_id, image_index, size).

        All rows are written in one transaction; a failure rolls back the
        whole call and propagates.

        Args:
            rows: Column dictionaries. Keys must be unique on the natural key.

        Returns:
            Number of rows written.
        """
        if not rows:
            return 0

        with self._scope() as session:
            stmt = _insert_for(session, ProductImage.__table__).values(rows)
            stmt = stmt.on_conflict_do_update(
                index_elements=list(NATURAL_KEY),
                set_={
                    **{col: stmt.excluded[col] for col in UPSERT_COLUMNS},
                    "updated_at": func.now(),
                },
            )
            session.execute(stmt)

        logger.debug(f"Upserted {len(rows)} product image rows")
        return len(rows)

    # ────────────────────────────────────────────────────────────────────────────
    # Audit
    # ────────────────────────────────────────────────────────────────────────────

    def audit(self, expected_sizes: list[str]) -> list[AuditIssue]:
        """
        Check every product with images for complete profile sets and a
        single primary row.

        Args:
            expected_sizes: Profile names every image index must carry.

        Returns:
            List of issues; empty when every gallery is consistent.
        """
        stmt = select(
            ProductImage.product_id,
            ProductImage.image_index,
            ProductImage.size,
            ProductImage.is_primary,
        ).order_by(ProductImage.product_id, ProductImage.image_index)

        sizes_by_index: dict[int, dict[int, set[str]]] = defaultdict(lambda: defaultdict(set))
        primaries: dict[int, int] = defaultdict(int)

        with self._scope() as session:
            for product_id, image_index, size, is_primary in session.execute(stmt):
                sizes_by_index[product_id][image_index].add(size.value)
                if is_primary:
                    primaries[product_id] += 1

        expected = set(expected_sizes)
        issues = []
        for product_id, indexes in sizes_by_index.items():
            for image_index, sizes in sorted(indexes.items()):
                missing = expected - sizes
                if missing:
                    issues.append(AuditIssue(
                        product_id,
                        f"image {image_index} missing sizes: {', '.join(sorted(missing))}",
                    ))
            if primaries[product_id] != 1:
                issues.append(AuditIssue(
                    product_id,
                    f"expected 1 primary image, found {primaries[product_id]}",
                ))

        return issues


class ProductRepository:
    """
    SQL-backed product directory.

    Implements the lookups the product matcher depends on. The products
    table belongs to the storefront; this repository only reads it and
    creates stubs when asked to.
    """

    def __init__(self, session_factory: sessionmaker | None = None):
        self._session_factory = session_factory

    def _scope(self):
        return session_scope(self._session_factory)

    def find_by_id(self, product_id: int) -> Product | None:
        """Get product by ID."""
        with self._scope() as session:
            return session.get(Product, product_id)

    def search(self, term: str) -> list[Product]:
        """
        Case-insensitive substring search on name or slug.

        Args:
            term: Search term (already normalized by the caller).

        Returns:
            Matching products, lowest ID first.
        """
        pattern = f"%{term}%"
        stmt = (
            select(Product)
            .where(or_(Product.name.ilike(pattern), Product.slug.ilike(pattern)))
            .order_by(Product.id)
        )
        with self._scope() as session:
            return list(session.execute(stmt).scalars().all())

    def list_active(self) -> list[Product]:
        """Get all active products ordered by ID."""
        stmt = select(Product).where(Product.active.is_(True)).order_by(Product.id)
        with self._scope() as session:
            return list(session.execute(stmt).scalars().all())

    def create(self, stub: ProductStub) -> Product:
        """
        Create a product from a stub.

        If another worker created the same ID first, the existing row is
        returned instead.
        """
        product = Product(
            id=stub.id,
            name=stub.name,
            slug=stub.slug,
            description=stub.description,
            price_usd=stub.price_usd,
            stock=stub.stock,
            featured=stub.featured,
            active=stub.active,
        )
        try:
            with self._scope() as session:
                session.add(product)
                session.flush()
                session.refresh(product)
        except IntegrityError:
            existing = self.find_by_id(stub.id)
            if existing is None:
                raise
            logger.debug(f"Product {stub.id} created concurrently, reusing it")
            return existing

        logger.info(f"Created product {product.id}: {product.name}")
        return product

    def link_occasion(self, product_id: int, occasion_slug: str) -> bool:
        """
        Link a product to an occasion by slug.

        Returns:
            True if a new link was created, False if it already existed or
            the occasion is unknown.
        """
        try:
            with self._scope() as session:
                occasion = session.execute(
                    select(Occasion).where(Occasion.slug == occasion_slug)
                ).scalar_one_or_none()
                if occasion is None:
                    logger.warning(f"Unknown occasion: {occasion_slug}")
                    return False

                if session.get(ProductOccasion, (product_id, occasion.id)):
                    return False

                session.add(ProductOccasion(product_id=product_id, occasion_id=occasion.id))
        except IntegrityError:
            logger.debug(f"Product {product_id} linked to '{occasion_slug}' concurrently")
            return False

        logger.info(f"Linked product {product_id} to occasion '{occasion_slug}'")
        return True


def size_from_name(name: str) -> ImageSize:
    """Map a profile name to the stored size enum."""
    return ImageSize(name)


# Occasion slugs referenced by pipeline.filename_parser.OCCASION_MAPPING
DEFAULT_OCCASIONS = [
    ("Cumpleaños", "cumpleanos"),
    ("Aniversario", "aniversario"),
    ("Día de la Madre", "dia-de-la-madre"),
    ("Bodas", "bodas"),
]


def seed_occasions(session_factory: sessionmaker | None = None) -> int:
    """
    Insert the default occasions that do not exist yet.

    Returns:
        Number of occasions created.
    """
    created = 0
    with session_scope(session_factory) as session:
        existing = set(session.execute(select(Occasion.slug)).scalars())
        for name, slug in DEFAULT_OCCASIONS:
            if slug not in existing:
                session.add(Occasion(name=name, slug=slug))
                created += 1

    if created:
        logger.info(f"Created {created} occasion(s)")
    return created

"""
SQLAlchemy models for the product image pipeline.

Database Schema:
----------------
products table (owned by the storefront, read and stub-created here):
    - id: Primary key
    - name, slug: Display name and URL slug (searched by fuzzy matching)
    - description, price_usd, stock, featured, active
    - created_at, updated_at

occasions / product_occasions tables:
    - Occasion catalogue and the many-to-many link to products

product_images table:
    - id: Primary key, auto-increment
    - product_id: FK to products
    - image_index: Display/sequence index (>= 1)
    - size: Resolution profile (thumb, small, medium, large)
    - url: Public object store URL
    - is_primary: Listing image flag, at most one per product
    - file_hash: SHA256 of the source image bytes
    - mime_type: Content type of the stored variant
    - created_at, updated_at
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class ImageSize(PyEnum):
    """Resolution profile names stored in product_images.size."""
    THUMB = "thumb"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


class Product(Base):
    """
    SQLAlchemy model for the products table.

    Only the columns the pipeline reads or fills when creating stubs.
    """
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price_usd: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now()
    )

    images: Mapped[List["ProductImage"]] = relationship(
        "ProductImage", back_populates="product", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_products_active", "active"),
    )

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, name='{self.name}')>"


class Occasion(Base):
    """Occasion catalogue entry (birthday, anniversary, ...)."""
    __tablename__ = "occasions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    def __repr__(self) -> str:
        return f"<Occasion(id={self.id}, slug='{self.slug}')>"


class ProductOccasion(Base):
    """Link table between products and occasions."""
    __tablename__ = "product_occasions"

    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), primary_key=True
    )
    occasion_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("occasions.id", ondelete="CASCADE"), primary_key=True
    )


class ProductImage(Base):
    """
    SQLAlchemy model for the product_images table.

    One row per (product, image index, resolution profile).
    """
    __tablename__ = "product_images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    image_index: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    size: Mapped[ImageSize] = mapped_column(
        Enum(ImageSize, name="image_size_enum", values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    file_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)  # SHA256
    mime_type: Mapped[str] = mapped_column(String(50), nullable=False, default="image/webp")

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now()
    )

    product: Mapped["Product"] = relationship("Product", back_populates="images")

    __table_args__ = (
        UniqueConstraint("product_id", "image_index", "size", name="uq_product_image_size"),
        CheckConstraint("image_index >= 1", name="ck_product_images_index_positive"),
        # One primary per product
        Index(
            "uq_product_images_primary",
            "product_id",
            unique=True,
            postgresql_where=text("is_primary"),
            sqlite_where=text("is_primary"),
        ),
        Index("idx_product_images_file_hash", "file_hash"),
        Index("idx_product_images_product_id", "product_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<ProductImage(product_id={self.product_id}, index={self.image_index}, "
            f"size={self.size.value}, primary={self.is_primary})>"
        )

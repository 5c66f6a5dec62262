"""
Database module for the product image pipeline.

This module provides database connectivity, models, and operations
for storing image metadata rows and reading the product directory.
"""

from db.database import get_engine, get_session_factory, init_db, session_scope
from db.models import ImageSize, Occasion, Product, ProductImage, ProductOccasion
from db.operations import ProductImageRepository, ProductRepository, ProductStub

__all__ = [
    "get_engine",
    "get_session_factory",
    "init_db",
    "session_scope",
    "ImageSize",
    "Occasion",
    "Product",
    "ProductImage",
    "ProductOccasion",
    "ProductImageRepository",
    "ProductRepository",
    "ProductStub",
]

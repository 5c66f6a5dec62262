"""
Product image ingestion pipeline.

This package turns a directory of source photos into deduplicated
multi-resolution web assets:
- Scanning directories for images
- Content hashing and duplicate detection
- Filename parsing and product matching
- Multi-resolution WebP encoding
- Object store uploads
- Product image assignment and batched persistence

Import the components from their modules, e.g.
``from pipeline.processor import ImageProcessor``.
"""

"""Shared test fixtures for the image pipeline."""

import io
import random
import threading
from pathlib import Path
from typing import Callable

import pytest
from PIL import Image

from db.database import create_engine_from_url, make_session_factory
from db.models import Base, Product
from db.operations import ProductImageRepository, ProductRepository, seed_occasions
from pipeline.object_store import ObjectStore, ObjectStoreError


class InMemoryObjectStore(ObjectStore):
    """Dict-backed object store with optional failure injection."""

    def __init__(self, fail_on: Callable[[str], bool] | None = None):
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.upload_calls: list[str] = []
        self.fail_on = fail_on
        self._lock = threading.Lock()

    def upload(self, path: str, data: bytes, content_type: str, upsert: bool = True) -> None:
        with self._lock:
            self.upload_calls.append(path)
            if self.fail_on and self.fail_on(path):
                raise ObjectStoreError(f"Injected failure for {path}")
            if path in self.objects and not upsert:
                raise ObjectStoreError(f"Object already exists: {path}")
            self.objects[path] = data
            self.content_types[path] = content_type

    def get_public_url(self, path: str) -> str:
        return f"https://cdn.test/product-images/{path}"

    def list(self, prefix: str) -> list[str]:
        folder = prefix.strip("/") + "/"
        with self._lock:
            return sorted(
                p[len(folder):] for p in self.objects
                if p.startswith(folder) and "/" not in p[len(folder):]
            )


def make_image_bytes(
    width: int = 64,
    height: int = 48,
    color: tuple[int, int, int] = (200, 30, 30),
    fmt: str = "PNG",
    mode: str = "RGB",
) -> bytes:
    """Render a small image with a gradient so different colors give different bytes."""
    image = Image.new(mode, (width, height), color if mode == "RGB" else color + (128,))
    pixels = image.load()
    for x in range(0, width, 4):
        for y in range(0, height, 4):
            base = pixels[x, y]
            pixels[x, y] = ((base[0] + x) % 256, (base[1] + y) % 256, base[2]) + tuple(base[3:])
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def session_factory(tmp_path: Path):
    """Session factory bound to a fresh SQLite database file."""
    engine = create_engine_from_url(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(engine)
    factory = make_session_factory(engine)
    seed_occasions(factory)
    yield factory
    engine.dispose()


@pytest.fixture
def image_repository(session_factory) -> ProductImageRepository:
    return ProductImageRepository(session_factory)


@pytest.fixture
def product_repository(session_factory) -> ProductRepository:
    return ProductRepository(session_factory)


@pytest.fixture
def add_products(session_factory):
    """Insert products given as (id, name[, slug]) tuples."""
    def _add(*specs):
        with session_factory() as session:
            for spec in specs:
                product_id, name = spec[0], spec[1]
                slug = spec[2] if len(spec) > 2 else f"product-{product_id}"
                session.add(Product(id=product_id, name=name, slug=slug, price_usd=10))
            session.commit()
    return _add


@pytest.fixture
def object_store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    path = tmp_path / "imgtemp"
    path.mkdir()
    return path


@pytest.fixture
def write_image(source_dir: Path):
    """Write a generated image into the source directory."""
    def _write(name: str, color=(200, 30, 30), width: int = 64, height: int = 48, data: bytes | None = None) -> Path:
        path = source_dir / name
        path.write_bytes(data if data is not None else make_image_bytes(width, height, color))
        return path
    return _write

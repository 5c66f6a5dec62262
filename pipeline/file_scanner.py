"""
File scanner module for discovering source images in a directory.

Provides directory scanning filtered by an allow-list of raster extensions.
"""

import logging
from pathlib import Path
from typing import Iterator

from pipeline.errors import SourceUnavailable

logger = logging.getLogger(__name__)

# Supported source extensions
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}


class FileScanner:
    """
    Scanner for discovering source image files.

    Attributes:
        extensions: Set of file extensions to include (lower-case, dotted).
        recursive: Whether to scan subdirectories.
    """

    def __init__(
        self,
        extensions: set[str] | None = None,
        recursive: bool = False
    ):
        """
        Initialize the file scanner.

        Args:
            extensions: Set of file extensions to scan for.
                       Defaults to IMAGE_EXTENSIONS.
            recursive: Whether to scan subdirectories.
        """
        self.extensions = {e.lower() for e in (extensions or IMAGE_EXTENSIONS)}
        self.recursive = recursive

    def scan(self, directory: str | Path) -> list[Path]:
        """
        Scan directory for image files.

        Args:
            directory: Path to directory to scan.

        Returns:
            List of paths to image files, sorted by name.

        Raises:
            SourceUnavailable: If directory doesn't exist or isn't a directory.
        """
        directory = Path(directory)

        if not directory.exists():
            raise SourceUnavailable(f"Directory does not exist: {directory}")

        if not directory.is_dir():
            raise SourceUnavailable(f"Path is not a directory: {directory}")

        try:
            entries = [p for p in self._walk(directory) if p.is_file()]
        except PermissionError as e:
            raise SourceUnavailable(f"Permission denied: {directory}") from e

        images = sorted((p for p in entries if self.accepts(p)), key=lambda p: p.name.lower())

        ignored = len(entries) - len(images)
        if ignored:
            logger.debug(f"Ignored {ignored} non-image or hidden file(s) in {directory}")

        logger.info(f"Found {len(images)} image(s) in {directory}")
        return images

    def _walk(self, directory: Path) -> Iterator[Path]:
        return directory.rglob("*") if self.recursive else directory.iterdir()

    def accepts(self, path: Path) -> bool:
        """Whether a file name passes the extension allow-list."""
        return path.suffix.lower() in self.extensions and not path.name.startswith(".")

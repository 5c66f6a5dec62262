"""
Error taxonomy for the ingestion pipeline.

Fatal errors abort the whole run. Skips and per-file failures are caught
by the processor at the smallest scope and turned into report entries.
"""


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    kind = "PipelineError"

    def __init__(self, message: str, filename: str | None = None):
        super().__init__(message)
        self.filename = filename


# ────────────────────────────────────────────────────────────────────────────────
# Fatal
# ────────────────────────────────────────────────────────────────────────────────

class FatalPipelineError(PipelineError):
    """Error that aborts the entire run."""
    kind = "FatalPipelineError"


class SourceUnavailable(FatalPipelineError):
    """Source directory is missing or is not a directory."""
    kind = "SourceUnavailable"


class ConfigurationError(FatalPipelineError):
    """Missing or invalid configuration (database, storage credentials)."""
    kind = "ConfigurationError"


# ────────────────────────────────────────────────────────────────────────────────
# Expected skips
# ────────────────────────────────────────────────────────────────────────────────

class FileSkipped(PipelineError):
    """File was skipped; counted, not an error."""
    kind = "FileSkipped"


class DuplicateImage(FileSkipped):
    """Content digest already ingested."""
    kind = "DuplicateImage"

    def __init__(self, message: str, filename: str | None = None, digest: str | None = None):
        super().__init__(message, filename)
        self.digest = digest


class UnparsableFilename(FileSkipped):
    """Filename does not match the active naming strategy."""
    kind = "UnparsableFilename"


class ProductNotFound(FileSkipped):
    """No product could be resolved for the file."""
    kind = "ProductNotFound"


class ImageSlotTaken(FileSkipped):
    """Another image already holds this product's image index."""
    kind = "ImageSlotTaken"


# ────────────────────────────────────────────────────────────────────────────────
# Per-file failures
# ────────────────────────────────────────────────────────────────────────────────

class FileFailed(PipelineError):
    """Per-file failure; the whole asset group is discarded."""
    kind = "FileFailed"


class EncodingError(FileFailed):
    """Source could not be read or one of the profiles failed to encode."""
    kind = "EncodingError"


class UploadError(FileFailed):
    """One of the variants failed to upload."""
    kind = "UploadError"


# ────────────────────────────────────────────────────────────────────────────────
# Per-batch failures
# ────────────────────────────────────────────────────────────────────────────────

class PersistenceError(PipelineError):
    """A batch of image rows could not be written."""
    kind = "PersistenceError"

    def __init__(self, message: str, batch_index: int, row_count: int):
        super().__init__(message)
        self.batch_index = batch_index
        self.row_count = row_count

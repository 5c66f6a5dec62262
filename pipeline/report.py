"""
End-of-run report for the ingestion pipeline.

The report is filled by a single writer: worker threads return
ProcessingResult values and the processor merges them here in the
main thread.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime

MAX_ERROR_DETAILS = 100
SUMMARY_ERROR_SAMPLE = 5


@dataclass(frozen=True)
class ErrorDetail:
    """One failure, for operator diagnostics."""
    file: str
    kind: str
    message: str


@dataclass
class PipelineReport:
    """Counts and error details for one pipeline run."""
    total_files: int = 0
    processed: int = 0
    uploaded: int = 0
    duplicates: int = 0
    parse_failures: int = 0
    match_failures: int = 0
    slot_conflicts: int = 0
    encode_failures: int = 0
    upload_failures: int = 0
    unexpected_failures: int = 0
    persist_failures: int = 0
    persisted_rows: int = 0
    products_created: int = 0
    groups_assigned: int = 0
    groups_unassigned: int = 0
    dry_run: bool = False
    errors: list[ErrorDetail] = field(default_factory=list)
    errors_dropped: int = 0
    start_time: datetime = field(default_factory=datetime.now)
    end_time: datetime | None = None

    @property
    def skipped(self) -> int:
        """Files skipped without error (duplicates, bad names, no product, taken slot)."""
        return self.duplicates + self.parse_failures + self.match_failures + self.slot_conflicts

    @property
    def failed(self) -> int:
        """Files and batches that failed."""
        return (
            self.encode_failures + self.upload_failures
            + self.unexpected_failures + self.persist_failures
        )

    @property
    def duration_seconds(self) -> float:
        if self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return 0.0

    def add_error(self, file: str, kind: str, message: str) -> None:
        """Record an error detail, keeping at most MAX_ERROR_DETAILS."""
        if len(self.errors) < MAX_ERROR_DETAILS:
            self.errors.append(ErrorDetail(file, kind, message))
        else:
            self.errors_dropped += 1

    def finish(self) -> "PipelineReport":
        self.end_time = datetime.now()
        return self

    def to_dict(self) -> dict:
        return {
            "total_files": self.total_files,
            "processed": self.processed,
            "uploaded": self.uploaded,
            "skipped": self.skipped,
            "duplicates": self.duplicates,
            "parse_failures": self.parse_failures,
            "match_failures": self.match_failures,
            "slot_conflicts": self.slot_conflicts,
            "encode_failures": self.encode_failures,
            "upload_failures": self.upload_failures,
            "unexpected_failures": self.unexpected_failures,
            "persist_failures": self.persist_failures,
            "persisted_rows": self.persisted_rows,
            "products_created": self.products_created,
            "groups_assigned": self.groups_assigned,
            "groups_unassigned": self.groups_unassigned,
            "errors": len(self.errors) + self.errors_dropped,
            "error_details": [asdict(e) for e in self.errors],
            "dry_run": self.dry_run,
            "duration_seconds": round(self.duration_seconds, 3),
        }

    def summary(self, sample: int = SUMMARY_ERROR_SAMPLE) -> str:
        """Generate summary string."""
        lines = [
            "=" * 50,
            "Image Pipeline Complete" + (" (dry run)" if self.dry_run else ""),
            "=" * 50,
            f"Total files: {self.total_files}",
            f"Processed: {self.processed}",
            f"Objects uploaded: {self.uploaded}",
            f"Skipped: {self.skipped} "
            f"(duplicates {self.duplicates}, unparsable {self.parse_failures}, "
            f"no product {self.match_failures}, slot taken {self.slot_conflicts})",
            f"Failed: {self.failed} "
            f"(encode {self.encode_failures}, upload {self.upload_failures}, "
            f"persist batches {self.persist_failures})",
            f"Rows persisted: {self.persisted_rows}",
        ]

        if self.products_created:
            lines.append(f"Products created: {self.products_created}")
        if self.groups_assigned or self.groups_unassigned:
            lines.append(
                f"Groups assigned: {self.groups_assigned}, unassigned: {self.groups_unassigned}"
            )

        lines.append(f"Duration: {self.duration_seconds:.1f} seconds")

        total_errors = len(self.errors) + self.errors_dropped
        if total_errors:
            lines.append("")
            lines.append(f"Errors ({total_errors}):")
            for error in self.errors[:sample]:
                lines.append(f"  - {error.file}: [{error.kind}] {error.message}")
            if total_errors > sample:
                lines.append(f"  ... and {total_errors - sample} more")

        return "\n".join(lines)

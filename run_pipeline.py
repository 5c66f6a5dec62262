#!/usr/bin/env python3
"""
CLI entry point for the product image pipeline.

Ingestion Modes:
    occasion: <tag>.<productId>.<sequence>.<ext> (default)
    reingest: product_<productId>_<sequence>_<hash>.<ext>
    fuzzy:    descriptive names matched against product name/slug
    random:   images allocated randomly to active products

Usage:
    python run_pipeline.py /path/to/photos
    python run_pipeline.py /path/to/photos --mode fuzzy
    python run_pipeline.py /path/to/photos --auto-create --batch-size 10
    python run_pipeline.py /path/to/photos --dry-run -v
    python run_pipeline.py /path/to/photos --report-json report.json
    python run_pipeline.py --redistribute --seed 42
    python run_pipeline.py --verify
"""

import argparse
import json
import logging
import random
import sys
from pathlib import Path

from db.database import dispose_engine, missing_tables, verify_connection
from pipeline.errors import FatalPipelineError
from pipeline.processor import DEFAULT_BATCH_DELAY, DEFAULT_BATCH_SIZE, ImageProcessor, IngestionMode
from pipeline.report import PipelineReport
from pipeline.storage_handler import MAX_BATCH_SIZE


def setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    """Configure logging for the pipeline run."""
    level = logging.DEBUG if verbose else logging.INFO

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers
    )


def print_progress(current: int, total: int, filename: str) -> None:
    """Print progress to console."""
    pct = (current / total) * 100 if total > 0 else 0
    print(f"[{current:4d}/{total:4d}] ({pct:5.1f}%) {filename}")


def write_report(report: PipelineReport, path: str) -> None:
    """Write the report counters and error details as JSON."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(report.to_dict(), f, indent=2)
    print(f"Report written to {path}")


def build_processor(args: argparse.Namespace) -> ImageProcessor:
    """Create the processor from parsed arguments."""
    return ImageProcessor(
        mode=IngestionMode(args.mode),
        batch_size=args.batch_size,
        batch_delay=args.batch_delay,
        persist_batch_size=args.persist_batch_size,
        auto_create=args.auto_create,
        dry_run=args.dry_run,
        recursive=args.recursive,
        rng=random.Random(args.seed) if args.seed is not None else None,
        progress_callback=print_progress if args.verbose else None,
    )


def run_pipeline(args: argparse.Namespace) -> int:
    """Run the image pipeline."""
    # Verify database connection
    print("Verifying database connection...")
    if not verify_connection():
        print("ERROR: Could not connect to database.")
        print("Please check your .env configuration and ensure the database is running.")
        return 1

    missing = missing_tables()
    if missing:
        print(f"ERROR: Missing tables: {', '.join(missing)}")
        print("Run: python init_db.py")
        return 1

    print("Database connection OK\n")

    processor = build_processor(args)

    if args.verify:
        issues = processor.verify()
        if not issues:
            print("All product galleries are consistent.")
            return 0
        print(f"Found {len(issues)} issue(s):")
        for issue in issues:
            print(f"  - product {issue.product_id}: {issue.problem}")
        return 1

    if args.redistribute:
        print("Redistributing stored image groups to active products...\n")
        report = processor.redistribute()
        print("\n" + report.summary())
        if args.report_json:
            write_report(report, args.report_json)
        return 0 if report.failed == 0 else 1

    input_path = Path(args.path)

    # Print configuration
    print("Pipeline Configuration:")
    print(f"  Input path: {input_path}")
    print(f"  Mode: {args.mode}")
    print(f"  Batch size: {args.batch_size} (delay {args.batch_delay}s)")
    print(f"  Persist batch size: {args.persist_batch_size}")
    print(f"  Auto-create products: {args.auto_create}")
    print(f"  Dry run: {args.dry_run}")
    print()

    # Run pipeline
    print("Starting pipeline...\n")
    report = processor.process_directory(input_path)

    # Print results
    print("\n" + report.summary())
    if args.report_json:
        write_report(report, args.report_json)

    # Return appropriate exit code
    if report.failed > 0:
        return 1
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Encode product photos to WebP sizes, upload them and assign them to products.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Ingestion Modes:
  occasion  <tag>.<productId>.<sequence>.<ext>, e.g. cumpleanos.12.1.png
  reingest  product_<productId>_<sequence>_<hash>.<ext>
  fuzzy     free-form names matched against product name/slug
  random    images assigned randomly to active products

Examples:
  python run_pipeline.py ./imgtemp                        # Occasion-tagged files
  python run_pipeline.py ./imgtemp --auto-create          # Create missing products
  python run_pipeline.py ./imgtemp --mode fuzzy -v
  python run_pipeline.py ./imgtemp --mode random --seed 7
  python run_pipeline.py --redistribute                   # Reassign stored images
  python run_pipeline.py --verify                         # Audit galleries
        """
    )

    parser.add_argument(
        "path",
        nargs="?",
        help="Path to directory containing source images"
    )

    action_group = parser.add_mutually_exclusive_group()
    action_group.add_argument(
        "--redistribute",
        action="store_true",
        help="Randomly reassign image groups already in storage"
    )
    action_group.add_argument(
        "--verify",
        action="store_true",
        help="Audit product galleries and exit"
    )

    parser.add_argument(
        "--mode",
        choices=[m.value for m in IngestionMode],
        default=IngestionMode.OCCASION.value,
        help="Filename convention / assignment mode (default: occasion)"
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=DEFAULT_BATCH_SIZE,
        help=f"Files processed concurrently per batch (default: {DEFAULT_BATCH_SIZE})"
    )
    parser.add_argument(
        "--batch-delay",
        type=float,
        default=DEFAULT_BATCH_DELAY,
        help=f"Seconds between batches (default: {DEFAULT_BATCH_DELAY})"
    )
    parser.add_argument(
        "--persist-batch-size",
        type=int,
        default=MAX_BATCH_SIZE,
        help=f"Rows per database batch (max {MAX_BATCH_SIZE})"
    )
    parser.add_argument(
        "--auto-create",
        action="store_true",
        help="Create stub products for unknown product IDs"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Encode only; no uploads, product creation or database writes"
    )
    parser.add_argument(
        "-r", "--recursive",
        action="store_true",
        help="Scan subdirectories"
    )
    parser.add_argument(
        "--seed",
        type=int,
        help="Random seed for allocation and stub products"
    )

    # Output options
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show detailed progress output"
    )
    parser.add_argument(
        "--log-file",
        help="Write logs to file"
    )
    parser.add_argument(
        "--report-json",
        metavar="PATH",
        help="Write the run report to a JSON file"
    )

    args = parser.parse_args()

    # Validate arguments
    if not (args.redistribute or args.verify) and not args.path:
        parser.error("the following arguments are required: path")
    if args.batch_size < 1:
        parser.error("--batch-size must be at least 1")
    if not 1 <= args.persist_batch_size <= MAX_BATCH_SIZE:
        parser.error(f"--persist-batch-size must be between 1 and {MAX_BATCH_SIZE}")

    # Setup logging
    setup_logging(args.verbose, args.log_file)

    try:
        return run_pipeline(args)
    except FatalPipelineError as e:
        print(f"\nFATAL: [{e.kind}] {e}")
        return 1
    except KeyboardInterrupt:
        print("\n\nPipeline interrupted by user.")
        return 130
    except Exception as e:
        print(f"\nERROR: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1
    finally:
        dispose_engine()


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
MediaSlim - Office Document Image Compressor

CLI tool that shrinks PowerPoint and Word files by resampling every embedded
raster image to the resolution it is actually displayed at and re-encoding
it, while keeping the package valid.

Features:
- Per-image target size from the slide/page layout at a chosen DPI
- WebP (default), JPEG or PNG output; an image is only replaced if smaller
- Several files per run, each succeeding or failing on its own
"""

import argparse
import logging
import sys
from pathlib import Path

from dimensions import DPI_PRESETS
from errors import PackageError, SettingsError, TranscodeError
from processor import DocumentOutcome, PackageProcessor, process_batch
from settings import DEFAULT_SETTINGS_PATH, load_settings
from transcoder import OUTPUT_FORMATS


def format_bytes(size: int) -> str:
    """Human-readable byte count: 0 B, 512 B, 1.5 KB, 3.2 MB."""
    if size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB"]
    index = 0
    value = float(size)
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{value:.0f} {units[index]}" if index == 0 else f"{value:.1f} {units[index]}"


def format_savings(original: int, compressed: int) -> str:
    """Size change as a percentage, e.g. '-42.3%'."""
    if original == 0:
        return "0%"
    return f"-{(1 - compressed / original) * 100:.1f}%"


def print_outcome(outcome: DocumentOutcome, output_path: Path = None, verbose: bool = False):
    """Print the report for one document."""
    print()
    print("=" * 60)
    print(f"Input:  {outcome.path}")

    if not outcome.success:
        error = outcome.error
        print()
        print("ERROR:")
        print(f"  ✗ {error}")
        if isinstance(error, TranscodeError) and error.media_path:
            print(f"    Image: {error.media_path}")
        if isinstance(error, PackageError) and error.stage is not None:
            print(f"    Failed after: {error.stage.value}")
        return

    result = outcome.result
    stats = result.stats
    print(f"Output: {output_path if output_path else result.output_name}")
    print()
    print(f"  Images recoded:  {stats.images_processed} / {stats.images_total}")
    print(f"  Original size:   {format_bytes(stats.original_size)}")
    print(f"  Compressed size: {format_bytes(stats.compressed_size)}"
          f" ({format_savings(stats.original_size, stats.compressed_size)})")

    if verbose and result.renames:
        print()
        print("  Renamed media:")
        for old, new in result.renames.items():
            print(f"    {old} -> {new}")


def configure_logging(verbose: bool, quiet: bool):
    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="mediaslim",
        description="Shrink the images inside PowerPoint and Word documents.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Compress with the settings file defaults (WebP, 150 DPI, quality 0.8)
  mediaslim deck.pptx

  # Several files, print resolution, into another directory
  mediaslim report.docx deck.pptx --dpi 300 -o compressed/

  # JPEG output at lower quality
  mediaslim deck.pptx --format jpeg --quality 0.6

Output files are named <name>_compressed.<ext> unless the settings file
sets another output_suffix.
        """
    )

    parser.add_argument(
        "inputs",
        type=Path,
        nargs="+",
        help="PPTX or DOCX files to process"
    )

    parser.add_argument(
        "-o", "--output-dir",
        type=Path,
        default=None,
        help="Directory for compressed files (default: next to each input)"
    )

    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help=f"Path to settings file (default: {DEFAULT_SETTINGS_PATH.name})"
    )

    parser.add_argument(
        "--quality",
        type=float,
        default=None,
        help="Encoder quality between 0 and 1"
    )

    parser.add_argument(
        "--dpi",
        type=int,
        default=None,
        help="Target resolution: 96 (screen), 150 (medium), 300 (print)"
    )

    parser.add_argument(
        "-f", "--format",
        choices=list(OUTPUT_FORMATS),
        default=None,
        help="Output image format"
    )

    parser.add_argument(
        "-d", "--dry-run",
        action="store_true",
        help="Process and report without writing output files"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show per-image detail"
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress all output except errors"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 1.0.0"
    )

    args = parser.parse_args(argv)
    configure_logging(args.verbose, args.quiet)

    try:
        settings = load_settings(args.config).override(
            quality=args.quality, dpi=args.dpi, format=args.format
        )
    except SettingsError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not settings.is_dpi_preset and not args.quiet:
        presets = ", ".join(str(dpi) for dpi in DPI_PRESETS)
        print(f"Warning: {settings.dpi} DPI is not a preset ({presets}); using it as given",
              file=sys.stderr)

    missing = [path for path in args.inputs if not path.exists()]
    for path in missing:
        print(f"Error: Input file not found: {path}", file=sys.stderr)
    if missing:
        return 1

    if args.output_dir is not None and not args.dry_run:
        args.output_dir.mkdir(parents=True, exist_ok=True)

    processor = PackageProcessor(settings)

    if not args.quiet:
        mode = "DRY RUN" if args.dry_run else "COMPRESS"
        print(f"\n{mode}: {len(args.inputs)} file(s) at {settings.dpi} DPI, "
              f"{settings.format} q={settings.quality:.2f}")

    def show_progress(path: Path, completed: int, total: int):
        if args.verbose and not args.quiet:
            print(f"  {path.name}: {completed}/{total} images", end="\r" if completed < total else "\n")

    failures = 0
    for outcome in process_batch(args.inputs, processor, on_progress=show_progress):
        output_path = None
        if outcome.success and not args.dry_run:
            directory = args.output_dir or outcome.path.parent
            output_path = directory / outcome.result.output_name
            try:
                output_path.write_bytes(outcome.result.output_bytes)
            except OSError as e:
                outcome = DocumentOutcome(path=outcome.path, error=e)

        if not outcome.success:
            failures += 1
            if args.quiet:
                print(f"Error: {outcome.path}: {outcome.error}", file=sys.stderr)

        if not args.quiet:
            print_outcome(outcome, output_path, verbose=args.verbose)

    if not args.quiet:
        print()
        done = len(args.inputs) - failures
        if failures:
            print(f"✗ {done} succeeded, {failures} failed.")
        else:
            print(f"✓ {done} file(s) processed successfully!")

    return 0 if failures == 0 else 1


if __name__ == "__main__":
    sys.exit(main())

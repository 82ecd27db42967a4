"""
MediaSlim Document Processor Module

Shrinks the raster images inside PPTX/DOCX packages: works out the size each
image is displayed at, re-encodes it no larger than that, and rewrites the
relationship and content-type parts so the package still opens.
Everything happens in memory on one archive per document.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from archive import CONTENT_TYPES_PATH, Archive
from content_types import drop_overrides, register_defaults
from dimensions import (
    PRESENTATION_PARTS,
    UNBOUNDED,
    WORDPROCESSING_PARTS,
    ImageDimension,
    collect_dimensions,
    scan_presentation_part,
    scan_wordprocessing_part,
)
from errors import PackageError, TranscodeError, UnsupportedFileType
from relationships import propagate_renames
from settings import CompressionSettings
from transcoder import PillowTranscoder, Transcoder

logger = logging.getLogger(__name__)

# Raster formats worth re-encoding; vector, font and other media are left alone
RASTER_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "bmp", "tiff", "tif"}

ProgressCallback = Callable[[int, int], None]


class DocumentKind(Enum):
    """The two OOXML package families handled."""
    PRESENTATION = "presentation"
    WORDPROCESSING = "wordprocessing"

    @property
    def media_prefix(self) -> str:
        return "ppt/media/" if self is DocumentKind.PRESENTATION else "word/media/"

    @property
    def part_pattern(self) -> "re.Pattern[str]":
        if self is DocumentKind.PRESENTATION:
            return PRESENTATION_PARTS
        return WORDPROCESSING_PARTS


KIND_BY_SUFFIX = {
    ".pptx": DocumentKind.PRESENTATION,
    ".pptm": DocumentKind.PRESENTATION,
    ".potx": DocumentKind.PRESENTATION,
    ".ppsx": DocumentKind.PRESENTATION,
    ".docx": DocumentKind.WORDPROCESSING,
    ".docm": DocumentKind.WORDPROCESSING,
    ".dotx": DocumentKind.WORDPROCESSING,
}


class ProcessingStage(Enum):
    """Where one document's processing got to."""
    LOADED = "loaded"
    DIMENSIONS_EXTRACTED = "dimensions_extracted"
    MEDIA_ENUMERATED = "media_enumerated"
    TRANSCODING = "transcoding"
    RELATIONSHIPS_PATCHED = "relationships_patched"
    SERIALIZED = "serialized"


@dataclass
class ProcessStats:
    """Size and image counts for one processed document."""
    original_size: int = 0
    compressed_size: int = 0
    images_processed: int = 0
    images_total: int = 0

    @property
    def bytes_saved(self) -> int:
        return self.original_size - self.compressed_size


@dataclass
class ProcessingResult:
    """Output of processing one document."""
    output_bytes: bytes
    stats: ProcessStats
    output_name: str
    kind: DocumentKind
    renames: Dict[str, str] = field(default_factory=dict)


def document_kind(filename: str) -> DocumentKind:
    """Package family from the file name's extension."""
    suffix = PurePosixPath(filename.replace("\\", "/")).suffix.lower()
    try:
        return KIND_BY_SUFFIX[suffix]
    except KeyError:
        raise UnsupportedFileType(f"Unsupported file type: {filename}") from None


def output_name_for(filename: str, suffix: str = "_compressed") -> str:
    """'deck.pptx' -> 'deck_compressed.pptx'."""
    name = PurePosixPath(filename.replace("\\", "/")).name
    return re.sub(r"(\.[^.]+)$", lambda m: f"{suffix}{m.group(1)}", name, count=1)


def is_raster_image(path: str) -> bool:
    extension = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    return extension in RASTER_EXTENSIONS


class PackageProcessor:
    """
    Processes one OOXML package at a time.

    Strategy:
    1. Load the ZIP into memory
    2. Scan slide/document parts for the size every image is shown at
    3. List raster media under the package's media directory
    4. Re-encode each one; keep the result only if it is strictly smaller
    5. Retarget relationships and register content types for renamed media
    6. Serialize

    Holds no per-document state, so one instance can process any number
    of documents one after another.
    """

    def __init__(self, settings: Optional[CompressionSettings] = None,
                 transcoder: Optional[Transcoder] = None):
        self.settings = settings or CompressionSettings()
        self.transcoder = transcoder or PillowTranscoder(self.settings.format)

    def process(self, data: bytes, filename: str,
                on_progress: Optional[ProgressCallback] = None) -> ProcessingResult:
        """
        Process one document.

        Args:
            data: Raw package bytes
            filename: Original file name, used for the kind and output name
            on_progress: Called with (completed, total) before the first
                image and after each one

        Returns:
            ProcessingResult with the rewritten package and statistics

        Raises:
            PackageError: any failure; its `stage` says where it happened.
                No output is produced for a failed document.
        """
        stage = None
        try:
            kind = document_kind(filename)
            archive = Archive.load(data)
            stage = ProcessingStage.LOADED

            dims = self._extract_dimensions(archive, kind)
            stage = ProcessingStage.DIMENSIONS_EXTRACTED

            media = archive.entries(kind.media_prefix, is_raster_image)
            stage = ProcessingStage.MEDIA_ENUMERATED
            logger.debug("%s: %d raster image(s), %d with a declared size",
                         filename, len(media), len(dims))

            stage = ProcessingStage.TRANSCODING
            renames, new_types, processed = self._transcode_media(
                archive, media, dims, on_progress
            )

            if renames:
                self._patch_references(archive, renames, new_types)
            stage = ProcessingStage.RELATIONSHIPS_PATCHED

            output = archive.serialize()
            stage = ProcessingStage.SERIALIZED

        except PackageError as e:
            if e.stage is None:
                e.stage = stage
            logger.error("%s: failed after %s: %s", filename,
                         stage.value if stage else "start", e)
            raise

        stats = ProcessStats(
            original_size=len(data),
            compressed_size=len(output),
            images_processed=processed,
            images_total=len(media),
        )
        logger.info("%s: %d/%d images recoded, %d -> %d bytes", filename,
                    stats.images_processed, stats.images_total,
                    stats.original_size, stats.compressed_size)

        return ProcessingResult(
            output_bytes=output,
            stats=stats,
            output_name=output_name_for(filename, self.settings.output_suffix),
            kind=kind,
            renames=renames,
        )

    def _extract_dimensions(self, archive: Archive, kind: DocumentKind) -> Dict[str, ImageDimension]:
        if kind is DocumentKind.PRESENTATION:
            scanner = partial(scan_presentation_part,
                              max_depth=self.settings.max_ancestor_depth)
        else:
            scanner = scan_wordprocessing_part
        return collect_dimensions(archive, kind.part_pattern, scanner, self.settings.dpi)

    def _transcode_media(self, archive: Archive, media: List[str],
                         dims: Dict[str, ImageDimension],
                         on_progress: Optional[ProgressCallback]):
        """
        Re-encode each media entry in order.

        Returns (renames, extension -> MIME for renamed media, recoded count).
        A transcoder failure aborts the whole document.
        """
        total = len(media)
        renames: Dict[str, str] = {}
        new_types: Dict[str, str] = {}
        processed = 0

        if on_progress:
            on_progress(0, total)

        for completed, media_path in enumerate(media, 1):
            original = archive.read(media_path)
            target = dims.get(media_path, UNBOUNDED)

            try:
                result = self.transcoder.transcode(
                    original, target.width, target.height, self.settings.quality
                )
            except TranscodeError as e:
                if e.media_path is None:
                    e.media_path = media_path
                raise

            if len(result.data) < len(original):
                new_path = self._new_media_path(archive, media_path, result.extension)
                archive.replace(media_path, new_path, result.data)
                processed += 1
                if new_path != media_path:
                    renames[media_path] = new_path
                    new_types[result.extension] = result.mime_type
                logger.debug("%s -> %s: %d -> %d bytes", media_path, new_path,
                             len(original), len(result.data))
            else:
                logger.debug("%s kept: re-encode was not smaller (%d >= %d bytes)",
                             media_path, len(result.data), len(original))

            if on_progress:
                on_progress(completed, total)

        return renames, new_types, processed

    def _new_media_path(self, archive: Archive, media_path: str, extension: str) -> str:
        """Same name with the new extension, numbered if that name is taken."""
        stem = re.sub(r"\.[^./]+$", "", media_path)
        candidate = f"{stem}.{extension}"
        counter = 1
        while candidate != media_path and candidate in archive:
            candidate = f"{stem}_{counter}.{extension}"
            counter += 1
        return candidate

    def _patch_references(self, archive: Archive, renames: Dict[str, str],
                          new_types: Dict[str, str]):
        patched = propagate_renames(archive, renames)
        logger.debug("Retargeted %d relationship part(s)", patched)

        if CONTENT_TYPES_PATH not in archive:
            logger.warning("Package has no %s; content types not updated", CONTENT_TYPES_PATH)
            return

        content_types = archive.read(CONTENT_TYPES_PATH)
        updated = register_defaults(content_types, new_types)
        updated = drop_overrides(updated, renames.keys())
        if updated != content_types:
            archive.write(CONTENT_TYPES_PATH, updated)


def process_document(data: bytes, filename: str, quality: float = 0.8, dpi: int = 150,
                     on_progress: Optional[ProgressCallback] = None,
                     image_format: str = "webp",
                     transcoder: Optional[Transcoder] = None) -> ProcessingResult:
    """Process one document with ad-hoc settings."""
    settings = CompressionSettings(quality=quality, dpi=dpi, format=image_format)
    return PackageProcessor(settings, transcoder).process(data, filename, on_progress)


@dataclass
class DocumentOutcome:
    """Terminal status of one document in a batch."""
    path: Path
    result: Optional[ProcessingResult] = None
    error: Optional[Exception] = None

    @property
    def success(self) -> bool:
        return self.error is None and self.result is not None


def process_batch(paths: Iterable[Path], processor: PackageProcessor,
                  on_progress: Optional[Callable[[Path, int, int], None]] = None,
                  should_stop: Optional[Callable[[], bool]] = None) -> Iterator[DocumentOutcome]:
    """
    Process documents strictly one after another.

    Each document succeeds or fails on its own; a failure is reported and
    the next document starts. Stopping (should_stop() returning True, or
    the caller abandoning the iterator) only takes effect between documents.
    """
    for path in paths:
        if should_stop is not None and should_stop():
            logger.info("Batch stopped before %s", path)
            return

        progress = partial(on_progress, path) if on_progress else None
        try:
            data = Path(path).read_bytes()
            result = processor.process(data, Path(path).name, progress)
        except (PackageError, OSError) as e:
            yield DocumentOutcome(path=path, error=e)
            continue

        yield DocumentOutcome(path=path, result=result)

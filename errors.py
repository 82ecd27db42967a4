"""
MediaSlim Errors

Exception taxonomy for package processing. Everything raised on purpose by
the core derives from PackageError so callers can report one document as
failed and move on to the next.
"""

from typing import Optional


class PackageError(Exception):
    """Base class for failures that abort processing of one document."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        # Filled in by the orchestrator with the ProcessingStage that failed
        self.stage = None


class UnsupportedFileType(PackageError):
    """Filename suffix is not a recognized OOXML document kind."""


class CorruptArchive(PackageError):
    """Input bytes are not a readable ZIP container."""


class MalformedPart(CorruptArchive):
    """An XML part that must be scanned could not be parsed."""

    def __init__(self, part_name: str, detail: str):
        super().__init__(f"Malformed XML part {part_name}: {detail}")
        self.part_name = part_name


class EntryNotFound(PackageError, KeyError):
    """Requested archive entry does not exist."""

    def __init__(self, path: str):
        super().__init__(f"Archive entry not found: {path}")
        self.path = path

    def __str__(self) -> str:
        return self.message


class TranscodeError(PackageError):
    """Image could not be re-encoded."""

    def __init__(self, message: str, media_path: Optional[str] = None):
        super().__init__(message)
        self.media_path = media_path


class DecodeError(TranscodeError):
    """Source image bytes could not be decoded."""


class EncodeError(TranscodeError):
    """Decoded image could not be written in the target format."""


class SettingsError(PackageError):
    """Configuration value is missing or out of range."""

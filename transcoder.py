"""
MediaSlim Transcoder Module

Resizes and re-encodes one raster image with Pillow.

The orchestrator only depends on the Transcoder protocol: bytes plus a
target box and quality in, encoded bytes and their MIME type out. It decides
on its own whether the result is worth keeping.
"""

import io
import logging
import warnings
from dataclasses import dataclass
from typing import Protocol

from PIL import Image, UnidentifiedImageError

from errors import DecodeError, EncodeError, SettingsError

logger = logging.getLogger(__name__)

# Target format -> (Pillow format name, MIME type, file extension)
OUTPUT_FORMATS = {
    'webp': ('WEBP', 'image/webp', 'webp'),
    'jpeg': ('JPEG', 'image/jpeg', 'jpeg'),
    'png': ('PNG', 'image/png', 'png'),
}

MIME_EXTENSIONS = {mime: extension for _, mime, extension in OUTPUT_FORMATS.values()}

# Background for formats without an alpha channel
JPEG_BACKGROUND = (255, 255, 255)

# Largest width or height libwebp can encode
WEBP_MAX_DIMENSION = 16383


@dataclass
class TranscodeResult:
    """Encoded image and its MIME type."""
    data: bytes
    mime_type: str
    width: int
    height: int

    @property
    def extension(self) -> str:
        return extension_for_mime(self.mime_type)


def extension_for_mime(mime_type: str) -> str:
    """File extension for an encoded image, e.g. image/webp -> webp."""
    if mime_type in MIME_EXTENSIONS:
        return MIME_EXTENSIONS[mime_type]
    return mime_type.rsplit("/", 1)[-1].split("+", 1)[0].lower()


class Transcoder(Protocol):
    def transcode(self, data: bytes, target_width: int, target_height: int,
                  quality: float) -> TranscodeResult:
        ...


def clamp_to_native(target_width: int, target_height: int,
                    native_width: int, native_height: int):
    """Final size: the target box, but never beyond the source resolution."""
    return (
        max(1, min(target_width, native_width)),
        max(1, min(target_height, native_height)),
    )


def fit_within(width: int, height: int, limit: int):
    """Scale (width, height) down so neither side exceeds limit, keeping the aspect ratio."""
    longest = max(width, height)
    if longest <= limit:
        return width, height
    scale = limit / longest
    return (
        max(1, min(limit, round(width * scale))),
        max(1, min(limit, round(height * scale))),
    )


class PillowTranscoder:
    """
    Transcoder backed by Pillow.

    Quality is the 0-1 scale used in settings; it maps onto Pillow's
    0-100 quality for lossy formats and is ignored for PNG.
    """

    def __init__(self, image_format: str = 'webp'):
        if image_format not in OUTPUT_FORMATS:
            raise SettingsError(f"Unsupported output format: {image_format}")
        self.image_format = image_format
        self.pil_format, self.mime_type, self.extension = OUTPUT_FORMATS[image_format]

    def transcode(self, data: bytes, target_width: int, target_height: int,
                  quality: float) -> TranscodeResult:
        image = self._decode(data)

        width, height = clamp_to_native(target_width, target_height, *image.size)
        if self.image_format == 'webp':
            width, height = fit_within(width, height, WEBP_MAX_DIMENSION)

        buffer = io.BytesIO()
        try:
            image = self._prepare_mode(image)
            if (width, height) != image.size:
                image = image.resize((width, height), Image.Resampling.LANCZOS)
            image.save(buffer, format=self.pil_format, **self._save_options(quality))
        except (OSError, ValueError, KeyError) as e:
            raise EncodeError(f"Failed to encode as {self.mime_type}: {e}") from e

        encoded = buffer.getvalue()
        logger.debug("Transcoded %d bytes -> %d bytes (%dx%d %s)",
                     len(data), len(encoded), width, height, self.image_format)
        return TranscodeResult(encoded, self.mime_type, width, height)

    def _decode(self, data: bytes) -> Image.Image:
        try:
            with warnings.catch_warnings():
                warnings.simplefilter('error', Image.DecompressionBombWarning)
                image = Image.open(io.BytesIO(data))
                image.load()
        except (UnidentifiedImageError, OSError, ValueError, SyntaxError,
                Image.DecompressionBombError, Image.DecompressionBombWarning) as e:
            raise DecodeError(f"Failed to load image: {e}") from e
        return image

    def _prepare_mode(self, image: Image.Image) -> Image.Image:
        has_alpha = image.mode in ('RGBA', 'LA') or (
            image.mode == 'P' and 'transparency' in image.info
        )

        if self.image_format == 'jpeg':
            if has_alpha:
                rgba = image.convert('RGBA')
                background = Image.new('RGB', rgba.size, JPEG_BACKGROUND)
                background.paste(rgba, mask=rgba.split()[-1])
                return background
            if image.mode not in ('RGB', 'L'):
                return image.convert('RGB')
            return image

        if self.image_format == 'webp':
            if image.mode not in ('RGB', 'RGBA'):
                return image.convert('RGBA' if has_alpha else 'RGB')
            return image

        # PNG keeps palette and grey modes, they are already compact
        if image.mode not in ('1', 'L', 'LA', 'P', 'RGB', 'RGBA'):
            return image.convert('RGBA' if has_alpha else 'RGB')
        return image

    def _save_options(self, quality: float) -> dict:
        pil_quality = max(1, min(100, int(round(quality * 100))))
        if self.image_format == 'webp':
            return {'quality': pil_quality, 'method': 6}
        if self.image_format == 'jpeg':
            return {'quality': pil_quality, 'optimize': True}
        return {'optimize': True}

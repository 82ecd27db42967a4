"""Shared fixtures: small OOXML packages built in memory, and test images.

Packages are assembled with zipfile from literal XML so each test states
exactly which parts and relationships exist.
"""

import io
import struct
import zipfile
from typing import Dict, Optional

import pytest
from PIL import Image

from transcoder import TranscodeResult

END_OF_CENTRAL_DIRECTORY = b"PK\x05\x06"
CENTRAL_DIRECTORY_HEADER = b"PK\x01\x02"

CONTENT_TYPES_XML = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
    '<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types">'
    '<Default Extension="png" ContentType="image/png"/>'
    '<Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>'
    '<Default Extension="xml" ContentType="application/xml"/>'
    '{overrides}'
    '</Types>'
)

RELS_TEMPLATE = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
    '<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">'
    '{relationships}'
    '</Relationships>'
)

IMAGE_REL_TYPE = "http://schemas.openxmlformats.org/officeDocument/2006/relationships/image"

SLIDE_PIC_TEMPLATE = (
    '<p:pic>'
    '<p:nvPicPr><p:cNvPr id="{shape_id}" name="Picture {shape_id}"/><p:cNvPicPr/><p:nvPr/></p:nvPicPr>'
    '<p:blipFill><a:blip r:embed="{rid}"/><a:stretch><a:fillRect/></a:stretch></p:blipFill>'
    '<p:spPr><a:xfrm><a:off x="0" y="0"/><a:ext cx="{cx}" cy="{cy}"/></a:xfrm>'
    '<a:prstGeom prst="rect"><a:avLst/></a:prstGeom></p:spPr>'
    '</p:pic>'
)

SLIDE_TEMPLATE = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
    '<p:sld xmlns:a="http://schemas.openxmlformats.org/drawingml/2006/main"'
    ' xmlns:r="http://schemas.openxmlformats.org/officeDocument/2006/relationships"'
    ' xmlns:p="http://schemas.openxmlformats.org/presentationml/2006/main">'
    '<p:cSld><p:spTree>{shapes}</p:spTree></p:cSld>'
    '</p:sld>'
)

WORD_INLINE_TEMPLATE = (
    '<w:p><w:r><w:drawing>'
    '<wp:inline distT="0" distB="0" distL="0" distR="0">'
    '<wp:extent cx="{cx}" cy="{cy}"/>'
    '<wp:docPr id="1" name="Picture 1"/>'
    '<a:graphic><a:graphicData uri="http://schemas.openxmlformats.org/drawingml/2006/picture">'
    '<pic:pic><pic:blipFill><a:blip r:embed="{rid}"/></pic:blipFill>'
    '<pic:spPr><a:xfrm><a:off x="0" y="0"/><a:ext cx="{cx}" cy="{cy}"/></a:xfrm></pic:spPr>'
    '</pic:pic></a:graphicData></a:graphic>'
    '</wp:inline>'
    '</w:drawing></w:r></w:p>'
)

WORD_DOCUMENT_TEMPLATE = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
    '<w:document xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main"'
    ' xmlns:r="http://schemas.openxmlformats.org/officeDocument/2006/relationships"'
    ' xmlns:wp="http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing"'
    ' xmlns:a="http://schemas.openxmlformats.org/drawingml/2006/main"'
    ' xmlns:pic="http://schemas.openxmlformats.org/drawingml/2006/picture">'
    '<w:body>{body}</w:body>'
    '</w:document>'
)


def image_relationship(rid: str, target: str) -> str:
    return f'<Relationship Id="{rid}" Type="{IMAGE_REL_TYPE}" Target="{target}"/>'


def rels_xml(*relationships: str) -> bytes:
    return RELS_TEMPLATE.format(relationships="".join(relationships)).encode("utf-8")


def content_types_xml(overrides: str = "") -> bytes:
    return CONTENT_TYPES_XML.format(overrides=overrides).encode("utf-8")


def slide_xml(*shapes: str) -> bytes:
    return SLIDE_TEMPLATE.format(shapes="".join(shapes)).encode("utf-8")


def slide_picture(rid: str, cx: int, cy: int, shape_id: int = 2) -> str:
    return SLIDE_PIC_TEMPLATE.format(rid=rid, cx=cx, cy=cy, shape_id=shape_id)


def word_document_xml(*paragraphs: str) -> bytes:
    return WORD_DOCUMENT_TEMPLATE.format(body="".join(paragraphs)).encode("utf-8")


def word_inline(rid: str, cx: int, cy: int) -> str:
    return WORD_INLINE_TEMPLATE.format(rid=rid, cx=cx, cy=cy)


def build_zip(entries: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buffer.getvalue()


def build_zip_with_directories(entries: Dict[str, bytes], directories) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for name in directories:
            zf.writestr(zipfile.ZipInfo(name), b"")
        for name, data in entries.items():
            zf.writestr(name, data)
    return buffer.getvalue()


def read_zip(data: bytes) -> Dict[str, bytes]:
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        return {name: zf.read(name) for name in zf.namelist()}


def with_central_directory_offset(data: bytes, offset: int) -> bytes:
    """Container whose end record points the central directory elsewhere."""
    record = data.rfind(END_OF_CENTRAL_DIRECTORY)
    field_start = record + 16
    return data[:field_start] + struct.pack("<I", offset) + data[field_start + 4:]


def with_undecodable_name(data: bytes) -> bytes:
    """First central directory name flagged UTF-8 but starting with a stray lead byte."""
    header = data.find(CENTRAL_DIRECTORY_HEADER)
    flags = struct.unpack_from("<H", data, header + 8)[0] | 0x800
    patched = bytearray(data)
    struct.pack_into("<H", patched, header + 8, flags)
    patched[header + 46] = 0xD5
    return bytes(patched)


def make_image(width: int, height: int, fmt: str = "PNG", mode: str = "RGB",
               noisy: bool = True) -> bytes:
    """Encoded test image; noise keeps lossless formats from compressing well."""
    if noisy:
        channels = [Image.effect_noise((width, height), 80) for _ in range(len(mode))]
        image = Image.merge(mode, channels) if len(mode) > 1 else channels[0]
    else:
        image = Image.new(mode, (width, height), (200,) * len(mode) if len(mode) > 1 else 200)
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def presentation_package(media: Optional[Dict[str, bytes]] = None,
                         slide: Optional[bytes] = None,
                         slide_rels: Optional[bytes] = None,
                         extra: Optional[Dict[str, bytes]] = None) -> Dict[str, bytes]:
    """Entry map for a minimal one-slide presentation."""
    entries = {
        "[Content_Types].xml": content_types_xml(),
        "_rels/.rels": rels_xml(),
        "ppt/presentation.xml": b'<?xml version="1.0"?><p:presentation xmlns:p="urn:p"/>',
        "ppt/slides/slide1.xml": slide if slide is not None else slide_xml(),
    }
    if slide_rels is not None:
        entries["ppt/slides/_rels/slide1.xml.rels"] = slide_rels
    for path, data in (media or {}).items():
        entries[path] = data
    entries.update(extra or {})
    return entries


def word_package(media: Optional[Dict[str, bytes]] = None,
                 document: Optional[bytes] = None,
                 document_rels: Optional[bytes] = None,
                 extra: Optional[Dict[str, bytes]] = None) -> Dict[str, bytes]:
    """Entry map for a minimal word-processing document."""
    entries = {
        "[Content_Types].xml": content_types_xml(),
        "_rels/.rels": rels_xml(),
        "word/document.xml": document if document is not None else word_document_xml(),
        "word/_rels/document.xml.rels": document_rels if document_rels is not None else rels_xml(),
    }
    for path, data in (media or {}).items():
        entries[path] = data
    entries.update(extra or {})
    return entries


class FakeTranscoder:
    """Transcoder stand-in: halves or grows the payload, records each call."""

    def __init__(self, mime_type: str = "image/webp", shrink: bool = True, error=None):
        self.mime_type = mime_type
        self.shrink = shrink
        self.error = error
        self.calls = []

    def transcode(self, data, target_width, target_height, quality):
        self.calls.append((target_width, target_height, quality))
        if self.error is not None:
            raise self.error
        payload = data[: max(1, len(data) // 2)] if self.shrink else data + b"padding"
        return TranscodeResult(payload, self.mime_type, target_width, target_height)


@pytest.fixture
def fake_transcoder():
    return FakeTranscoder()

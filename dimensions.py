"""
MediaSlim Dimensions Module

Works out how large each embedded image is actually displayed, so it can be
resampled to no more pixels than the page needs.

Each scanned part is reduced in one pass to a flat list of DrawingRecords
(resolved media path + extent in EMU). The two schemas need different walks:

- PresentationML: find each blip, climb to the enclosing shape/picture
  (bounded depth), then look down for xfrm/ext.
- WordprocessingML: find each inline/anchor drawing, read its direct
  extent child, then take the first blip below it.

Elements are matched by local name so namespace prefixes do not matter.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from lxml import etree

from archive import Archive
from errors import MalformedPart
from relationships import load_relationships

logger = logging.getLogger(__name__)

EMU_PER_INCH = 914400
DEFAULT_DPI = 96
DPI_PRESETS = (96, 150, 300)

MAX_ANCESTOR_DEPTH = 10

# Local names
BLIP = 'blip'
EMBED_ATTR = 'embed'
PRESENTATION_CONTAINERS = {'pic', 'sp', 'wsp'}
TRANSFORM = 'xfrm'
TRANSFORM_EXTENT = 'ext'
WORD_DRAWING_CONTAINERS = {'inline', 'anchor'}
WORD_EXTENT = 'extent'

PRESENTATION_PARTS = re.compile(
    r"^ppt/(slides|slideLayouts|slideMasters|notesSlides|notesMasters|handoutMasters)/[^/]+\.xml$"
)
WORDPROCESSING_PARTS = re.compile(
    r"^word/(document|header\d*|footer\d*|footnotes|endnotes)\.xml$"
)


@dataclass(frozen=True)
class ImageDimension:
    """Pixel size an image needs, at the requested DPI."""
    width: int
    height: int

    def merge(self, other: "ImageDimension") -> "ImageDimension":
        """Component-wise maximum of two observations."""
        return ImageDimension(max(self.width, other.width), max(self.height, other.height))


# Used for media no part declares a size for. The transcoder never
# upscales, so this keeps the native resolution.
UNBOUNDED = ImageDimension(99999, 99999)


@dataclass(frozen=True)
class DrawingRecord:
    """One image placement found in a part."""
    media_path: str
    cx: int
    cy: int

    def to_pixels(self, dpi: int) -> ImageDimension:
        return ImageDimension(emu_to_pixels(self.cx, dpi), emu_to_pixels(self.cy, dpi))


Scanner = Callable[[bytes, Mapping[str, str], str], List[DrawingRecord]]


def emu_to_pixels(emu: int, dpi: int = DEFAULT_DPI) -> int:
    """Convert English Metric Units to pixels at the given DPI."""
    return round(emu / EMU_PER_INCH * dpi)


def merge_dimension(dims: Dict[str, ImageDimension], media_path: str,
                    dimension: ImageDimension):
    """Record a size observation, keeping the largest width and height seen."""
    existing = dims.get(media_path)
    dims[media_path] = dimension if existing is None else existing.merge(dimension)


def _local_name(element: etree._Element) -> Optional[str]:
    if not isinstance(element.tag, str):
        return None
    return etree.QName(element).localname


def _embed_id(blip: etree._Element) -> Optional[str]:
    for key, value in blip.attrib.items():
        if etree.QName(key).localname == EMBED_ATTR and value:
            return value
    return None


def _read_extent(element: etree._Element) -> Optional[Tuple[int, int]]:
    """cx/cy of an extent element, or None if absent or not positive."""
    try:
        cx = int(element.get('cx', '0'))
        cy = int(element.get('cy', '0'))
    except ValueError:
        return None
    if cx <= 0 or cy <= 0:
        return None
    return cx, cy


def _parse_part(xml: bytes, part_name: str) -> etree._Element:
    try:
        parser = etree.XMLParser(remove_blank_text=False, resolve_entities=False, huge_tree=True)
        return etree.fromstring(xml, parser)
    except etree.XMLSyntaxError as e:
        raise MalformedPart(part_name, str(e)) from e


# =============================================================================
# PresentationML
# =============================================================================

def scan_presentation_part(xml: bytes, rel_map: Mapping[str, str],
                           part_name: str = "<part>",
                           max_depth: int = MAX_ANCESTOR_DEPTH) -> List[DrawingRecord]:
    """Drawing records for a slide, layout, master or notes part."""
    root = _parse_part(xml, part_name)
    records: List[DrawingRecord] = []

    for element in root.iter():
        if _local_name(element) != BLIP:
            continue

        rid = _embed_id(element)
        if not rid:
            continue
        media_path = rel_map.get(rid)
        if media_path is None:
            logger.warning("%s: unresolved image reference %s", part_name, rid)
            continue

        extent = _extent_from_ancestors(element, max_depth)
        if extent is None:
            logger.debug("%s: no declared size for %s", part_name, media_path)
            continue

        records.append(DrawingRecord(media_path, *extent))

    return records


def _extent_from_ancestors(blip: etree._Element, max_depth: int) -> Optional[Tuple[int, int]]:
    """Climb to the enclosing picture/shape and read its transform extent."""
    current = blip
    for _ in range(max_depth):
        current = current.getparent()
        if current is None:
            return None
        if _local_name(current) in PRESENTATION_CONTAINERS:
            return _extent_in_container(current)
    return None


def _extent_in_container(container: etree._Element) -> Optional[Tuple[int, int]]:
    for element in container.iter():
        if _local_name(element) != TRANSFORM:
            continue
        for child in element:
            if _local_name(child) == TRANSFORM_EXTENT:
                extent = _read_extent(child)
                if extent is not None:
                    return extent
    return None


# =============================================================================
# WordprocessingML
# =============================================================================

def scan_wordprocessing_part(xml: bytes, rel_map: Mapping[str, str],
                             part_name: str = "<part>") -> List[DrawingRecord]:
    """Drawing records for a document, header, footer or note part."""
    root = _parse_part(xml, part_name)
    records: List[DrawingRecord] = []

    for container in root.iter():
        if _local_name(container) not in WORD_DRAWING_CONTAINERS:
            continue

        extent = None
        for child in container:
            if _local_name(child) == WORD_EXTENT:
                extent = _read_extent(child)
                break
        if extent is None:
            continue

        rid = None
        for element in container.iterdescendants():
            if _local_name(element) == BLIP:
                rid = _embed_id(element)
                break
        if not rid:
            continue

        media_path = rel_map.get(rid)
        if media_path is None:
            logger.warning("%s: unresolved image reference %s", part_name, rid)
            continue

        records.append(DrawingRecord(media_path, *extent))

    return records


# =============================================================================
# Package level
# =============================================================================

def apply_records(dims: Dict[str, ImageDimension], records: Iterable[DrawingRecord],
                  dpi: int) -> Dict[str, ImageDimension]:
    for record in records:
        merge_dimension(dims, record.media_path, record.to_pixels(dpi))
    return dims


def extract_presentation(xml: bytes, rel_map: Mapping[str, str], dpi: int,
                         dims: Optional[Dict[str, ImageDimension]] = None,
                         part_name: str = "<part>") -> Dict[str, ImageDimension]:
    """Merge the image sizes declared in one presentation part into dims."""
    records = scan_presentation_part(xml, rel_map, part_name)
    return apply_records({} if dims is None else dims, records, dpi)


def extract_wordprocessing(xml: bytes, rel_map: Mapping[str, str], dpi: int,
                           dims: Optional[Dict[str, ImageDimension]] = None,
                           part_name: str = "<part>") -> Dict[str, ImageDimension]:
    """Merge the image sizes declared in one word-processing part into dims."""
    records = scan_wordprocessing_part(xml, rel_map, part_name)
    return apply_records({} if dims is None else dims, records, dpi)


def collect_dimensions(archive: Archive, part_pattern: "re.Pattern[str]",
                       scanner: Scanner, dpi: int) -> Dict[str, ImageDimension]:
    """
    Scan every matching part of the package and build one shared
    media path -> required pixel size map.

    Parts without a .rels file are skipped; their images stay unsized.
    """
    dims: Dict[str, ImageDimension] = {}
    parts = archive.entries(predicate=lambda path: part_pattern.match(path) is not None)

    for part_name in parts:
        rel_map = load_relationships(archive, part_name)
        if rel_map is None:
            continue
        records = scanner(archive.read(part_name), rel_map, part_name)
        apply_records(dims, records, dpi)
        logger.debug("%s: %d sized image reference(s)", part_name, len(records))

    return dims

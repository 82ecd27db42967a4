"""
MediaSlim Relationships Module

Reads `_rels/*.rels` parts into relationship-id -> archive path maps, and
retargets relationship entries after media renames.

Reading goes through lxml. Writing is a textual edit of Target attribute
values only, so the rest of each part stays byte-for-byte intact.
"""

import logging
import posixpath
import re
from typing import Dict, Mapping, Optional, Tuple

from lxml import etree

from archive import Archive, decode_xml, encode_xml, is_rels_part
from errors import MalformedPart

logger = logging.getLogger(__name__)

# Start tag of one Relationship element, prefixed or not
RELATIONSHIP_TAG_PATTERN = re.compile(
    r"<(?:[\w.-]+:)?Relationship\b(?:\"[^\"]*\"|'[^']*'|[^'\">])*>"
)
# Target="..." or Target='...' inside that tag
TARGET_ATTR_PATTERN = re.compile(r'(\bTarget\s*=\s*)(["\'])(.*?)\2', re.DOTALL)


def resolve_target(base_dir: str, target: str) -> str:
    """
    Resolve a relationship target against the directory of its source part.

    A target that does not start with '..' or './' is a direct child of
    base_dir. Otherwise each component is walked: '..' pops a directory,
    '.' is ignored. A leading '/' means the package root.
    """
    if target.startswith("/"):
        return posixpath.normpath(target).lstrip("/")

    if not target.startswith("..") and not target.startswith("./"):
        return f"{base_dir}/{target}" if base_dir else target

    parts = [p for p in base_dir.split("/") if p]
    for component in target.split("/"):
        if component == "..":
            if parts:
                parts.pop()
        elif component not in (".", ""):
            parts.append(component)
    return "/".join(parts)


def rels_path_for(part_path: str) -> Tuple[str, str]:
    """
    Return (rels part path, directory of the part) for a content part.

    'ppt/slides/slide1.xml' -> ('ppt/slides/_rels/slide1.xml.rels', 'ppt/slides')
    """
    directory, _, filename = part_path.rpartition("/")
    if directory:
        return f"{directory}/_rels/{filename}.rels", directory
    return f"_rels/{filename}.rels", ""


def parse_relationships(rels_xml: bytes, base_dir: str,
                        part_name: str = "<rels>") -> Dict[str, str]:
    """
    Build a relationship-id -> archive path map from one .rels part.

    Relationships missing Id or Target are skipped, as are external
    targets. Elements are matched by local name so prefixed or
    unqualified Relationships both work.
    """
    try:
        parser = etree.XMLParser(remove_blank_text=False, resolve_entities=False)
        root = etree.fromstring(rels_xml, parser)
    except etree.XMLSyntaxError as e:
        raise MalformedPart(part_name, str(e)) from e

    mapping: Dict[str, str] = {}
    for rel in root.iter():
        if not isinstance(rel.tag, str) or etree.QName(rel).localname != 'Relationship':
            continue
        rid = rel.get('Id')
        target = rel.get('Target')
        if not rid or not target:
            continue
        if rel.get('TargetMode') == 'External':
            continue
        mapping[rid] = resolve_target(base_dir, target)
    return mapping


def load_relationships(archive: Archive, part_path: str) -> Optional[Dict[str, str]]:
    """
    Relationship map for a content part, or None when the part has no
    .rels file (its image references are then unresolvable).
    """
    rels_path, base_dir = rels_path_for(part_path)
    if rels_path not in archive:
        logger.debug("No relationships for %s", part_path)
        return None
    return parse_relationships(archive.read(rels_path), base_dir, rels_path)


def retarget_relationships(rels_xml: bytes, filename_renames: Mapping[str, str]) -> Optional[bytes]:
    """
    Point relationship targets at renamed media files.

    Only internal Target values whose last path segment equals an old
    filename are touched; 'media/myimage1.png' is left alone when
    'image1.png' is renamed.

    Returns:
        The patched part, or None if nothing changed.
    """
    text, encoding = decode_xml(rels_xml)
    changed = False

    def _swap_target(match: re.Match) -> str:
        nonlocal changed
        prefix, quote, value = match.groups()
        head, sep, filename = value.rpartition("/")
        new_filename = filename_renames.get(filename)
        if new_filename is None:
            return match.group(0)
        changed = True
        return f"{prefix}{quote}{head}{sep}{new_filename}{quote}"

    def _swap_element(match: re.Match) -> str:
        tag = match.group(0)
        if re.search(r'\bTargetMode\s*=\s*["\']External["\']', tag):
            return tag
        return TARGET_ATTR_PATTERN.sub(_swap_target, tag)

    patched = RELATIONSHIP_TAG_PATTERN.sub(_swap_element, text)
    if not changed:
        return None
    return encode_xml(patched, encoding)


def propagate_renames(archive: Archive, renames: Mapping[str, str]) -> int:
    """
    Rewrite every .rels part in the archive for old -> new media paths.

    Returns the number of relationship parts that changed.
    """
    filename_renames = {
        posixpath.basename(old): posixpath.basename(new)
        for old, new in renames.items()
    }
    patched_parts = 0
    for rels_path in archive.entries(predicate=is_rels_part):
        patched = retarget_relationships(archive.read(rels_path), filename_renames)
        if patched is not None:
            archive.write(rels_path, patched)
            patched_parts += 1
            logger.debug("Retargeted media in %s", rels_path)
    return patched_parts

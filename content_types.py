"""
MediaSlim Content Types Module

Keeps [Content_Types].xml in step with renamed media.

The part is read with lxml but only ever patched as text: new Default
elements go right after the root start tag, stale Overrides are cut out,
and nothing else in the part is re-rendered. Round-tripping this part
through a serializer adds namespace declarations and reflows whitespace
that other consumers depend on.
"""

import logging
import re
from typing import Iterable, List, Mapping, Set, Tuple

from lxml import etree

from archive import decode_xml, encode_xml
from errors import MalformedPart

logger = logging.getLogger(__name__)

CT_NS = 'http://schemas.openxmlformats.org/package/2006/content-types'

COMMENT_PATTERN = re.compile(r'<!--.*?-->', re.DOTALL)
# Any start tag (not a declaration, PI or comment); group 1 is the qualified name
START_TAG_PATTERN = re.compile(
    r'<(?![?!/])([\w.:-]+)(?:"[^"]*"|\'[^\']*\'|[^\'">])*>'
)
OVERRIDE_PATTERN = re.compile(
    r'[ \t]*<(?:[\w.-]+:)?Override\b(?:"[^"]*"|\'[^\']*\'|[^\'">])*?/>[ \t]*(?:\r?\n)?'
)
PART_NAME_PATTERN = re.compile(r'\bPartName\s*=\s*(["\'])(.*?)\1', re.DOTALL)


def _parse(data: bytes) -> etree._Element:
    try:
        parser = etree.XMLParser(remove_blank_text=False, resolve_entities=False)
        return etree.fromstring(data, parser)
    except etree.XMLSyntaxError as e:
        raise MalformedPart('[Content_Types].xml', str(e)) from e


def registered_extensions(data: bytes) -> Set[str]:
    """Lower-cased extensions that already have a Default entry."""
    root = _parse(data)
    extensions = set()
    for element in root.iter():
        if not isinstance(element.tag, str):
            continue
        if etree.QName(element).localname == 'Default':
            extension = element.get('Extension')
            if extension:
                extensions.add(extension.lower())
    return extensions


def _root_start_tag(text: str) -> re.Match:
    comments = [m.span() for m in COMMENT_PATTERN.finditer(text)]
    for match in START_TAG_PATTERN.finditer(text):
        start = match.start()
        if any(c_start <= start < c_end for c_start, c_end in comments):
            continue
        return match
    raise MalformedPart('[Content_Types].xml', 'no root element')


def register_defaults(data: bytes, defaults: Mapping[str, str]) -> bytes:
    """
    Ensure a Default entry exists for each extension -> content type.

    Extensions already declared (case-insensitive) are left alone, so
    applying the same defaults twice changes nothing the second time.
    Returns the part unchanged when nothing was missing.
    """
    present = registered_extensions(data)
    missing: List[Tuple[str, str]] = []
    for extension, content_type in sorted(defaults.items()):
        key = extension.lower()
        if key in present:
            continue
        present.add(key)
        missing.append((extension, content_type))

    if not missing:
        return data

    text, encoding = decode_xml(data)
    root_tag = _root_start_tag(text)
    qualified_name = root_tag.group(1)
    prefix = qualified_name.split(':', 1)[0] + ':' if ':' in qualified_name else ''

    insertion = ''.join(
        f'<{prefix}Default Extension="{extension}" ContentType="{content_type}"/>'
        for extension, content_type in missing
    )

    tag_text = root_tag.group(0)
    if tag_text.endswith('/>'):
        # <Types .../> has no children yet
        replacement = f'{tag_text[:-2].rstrip()}>{insertion}</{qualified_name}>'
    else:
        replacement = tag_text + insertion

    patched = text[:root_tag.start()] + replacement + text[root_tag.end():]
    logger.debug("Registered content types for: %s",
                 ', '.join(extension for extension, _ in missing))
    return encode_xml(patched, encoding)


def drop_overrides(data: bytes, part_paths: Iterable[str]) -> bytes:
    """
    Remove Override entries that point at parts no longer in the package.

    part_paths are archive paths ('ppt/media/image1.png'); PartName values
    are package-absolute and compared case-insensitively.
    """
    targets = {'/' + path.lstrip('/').lower() for path in part_paths}
    if not targets:
        return data

    text, encoding = decode_xml(data)
    removed = 0

    def _drop(match: re.Match) -> str:
        nonlocal removed
        part_name = PART_NAME_PATTERN.search(match.group(0))
        if part_name is None or part_name.group(2).lower() not in targets:
            return match.group(0)
        removed += 1
        return ''

    patched = OVERRIDE_PATTERN.sub(_drop, text)
    if not removed:
        return data

    logger.debug("Dropped %d stale content type override(s)", removed)
    return encode_xml(patched, encoding)

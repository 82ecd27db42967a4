"""
MediaSlim Archive Module

In-memory view of an OOXML package: an ordered mapping of entry path to
bytes, loaded from and serialized back to a ZIP blob. All mutation happens
in memory; nothing touches disk.
"""

import codecs
import io
import logging
import struct
import zipfile
import zlib
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from errors import CorruptArchive, EntryNotFound

logger = logging.getLogger(__name__)

CONTENT_TYPES_PATH = "[Content_Types].xml"
RELS_SUFFIX = ".rels"

# What zipfile raises for damaged containers: bad offsets surface as
# ValueError (negative seek), bad UTF-8 names as UnicodeDecodeError
ZIP_READ_ERRORS = (
    zipfile.BadZipFile, zlib.error, struct.error, EOFError,
    NotImplementedError, RuntimeError, ValueError, OSError,
)


@dataclass
class Archive:
    """
    Named entries of a ZIP package.

    Paths are '/'-separated and case-sensitive. Entry order follows the
    source archive; new entries are appended, replaced ones keep their slot.
    Directory entries are carried through to the output but are not
    listed by entries().
    """
    _entries: Dict[str, bytes] = field(default_factory=dict)
    _compression: Dict[str, int] = field(default_factory=dict)
    _directories: List[zipfile.ZipInfo] = field(default_factory=list)

    @classmethod
    def load(cls, data: bytes) -> "Archive":
        """
        Read a ZIP blob into memory.

        Raises:
            CorruptArchive: if the bytes are not a readable ZIP container.
                No partially-populated archive is returned.
        """
        archive = cls()
        try:
            with zipfile.ZipFile(io.BytesIO(data), "r") as zf:
                for info in zf.infolist():
                    if info.is_dir():
                        archive._directories.append(info)
                        continue
                    archive._entries[info.filename] = zf.read(info)
                    archive._compression[info.filename] = info.compress_type
        except ZIP_READ_ERRORS as e:
            raise CorruptArchive(f"Not a valid OOXML container: {e}") from e

        logger.debug("Loaded %d entries, %d directories (%d bytes)",
                     len(archive._entries), len(archive._directories), len(data))
        return archive

    def __contains__(self, path: str) -> bool:
        return path in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self, prefix: str = "",
                predicate: Optional[Callable[[str], bool]] = None) -> List[str]:
        """List entry paths under a prefix, optionally filtered."""
        return [
            path for path in self._entries
            if path.startswith(prefix) and (predicate is None or predicate(path))
        ]

    def read(self, path: str) -> bytes:
        try:
            return self._entries[path]
        except KeyError:
            raise EntryNotFound(path) from None

    def write(self, path: str, data: bytes):
        """Add or overwrite an entry."""
        self._entries[path] = data

    def replace(self, old_path: str, new_path: str, data: bytes):
        """
        Swap an entry for new content under a (possibly) different path,
        keeping its position in the archive order.
        """
        if old_path not in self._entries:
            raise EntryNotFound(old_path)
        if new_path == old_path:
            self._entries[old_path] = data
            return

        rebuilt: Dict[str, bytes] = {}
        for path, content in self._entries.items():
            if path == old_path:
                rebuilt[new_path] = data
            elif path != new_path:
                rebuilt[path] = content
        self._entries = rebuilt

        compress_type = self._compression.pop(old_path, None)
        if compress_type is not None:
            self._compression[new_path] = compress_type

    def remove(self, path: str):
        self._entries.pop(path, None)
        self._compression.pop(path, None)

    def directories(self) -> List[str]:
        return [info.filename for info in self._directories]

    def serialize(self) -> bytes:
        """Write directory entries, then all file entries, to a new ZIP blob."""
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
            for source in self._directories:
                info = zipfile.ZipInfo(source.filename, date_time=source.date_time)
                info.external_attr = source.external_attr
                zf.writestr(info, b"")
            for path, data in self._entries.items():
                compress_type = self._compression.get(path, zipfile.ZIP_DEFLATED)
                if compress_type not in (zipfile.ZIP_STORED, zipfile.ZIP_DEFLATED):
                    compress_type = zipfile.ZIP_DEFLATED
                zf.writestr(path, data, compress_type=compress_type)
        return buffer.getvalue()


def is_rels_part(path: str) -> bool:
    return path.endswith(RELS_SUFFIX)


def decode_xml(data: bytes) -> Tuple[str, str]:
    """
    Decode an XML part to text for surgical string edits.

    Returns the text and the codec to encode it back with, so a part
    round-trips with its original encoding and BOM.
    """
    if data.startswith(codecs.BOM_UTF8):
        return data.decode("utf-8-sig"), "utf-8-sig"
    if data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        return data.decode("utf-16"), "utf-16"
    return data.decode("utf-8"), "utf-8"


def encode_xml(text: str, encoding: str) -> bytes:
    return text.encode(encoding)

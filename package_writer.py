"""
PPTX Package Writer

Serializes a RelationshipGraph back into a new archive:
- Entries the reader decoded are re-emitted from the graph
- Removed media, layouts and masters are skipped
- Transcoded media is written from memory
- Everything else is copied byte-for-byte from the source archive

The archive is built in a temporary file next to the output and moved into
place only when complete, so a failed run never leaves a truncated package.
"""

import os
import tempfile
import zipfile
import zlib
from pathlib import Path

from errors import ContainerError, PackageWriteError, PartNameError
from package_model import (
    CONTENT_TYPES_ENTRY,
    MEDIA_DIR,
    PRESENTATION_ENTRY,
    PRESENTATION_RELS_ENTRY,
    PartKind,
    RelationshipGraph,
    part_name,
    part_number,
    rels_name,
    serialize_xml,
)

# Timestamp for newly generated entries so equal input gives equal output
FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)


class PackageWriter:
    """Writes the final graph plus pass-through entries from the source archive."""

    def __init__(self, graph: RelationshipGraph, source: zipfile.ZipFile, verbose: bool = False):
        self.graph = graph
        self.source = source
        self.verbose = verbose

    def _log(self, message: str):
        if self.verbose:
            print(message)

    def write(self, output_path: Path) -> int:
        """
        Write the package to output_path and return its size in bytes.

        Raises:
            PackageWriteError: the output cannot be created or written
            ContainerError: a pass-through entry cannot be read from the source
        """
        output_path = Path(output_path)
        self._log(f"  Writing {output_path}")

        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(prefix=".pptoptimize_", suffix=".tmp",
                                             dir=output_path.parent)
            os.close(fd)
        except OSError as e:
            raise PackageWriteError(f"cannot create output: {e}", entry=str(output_path)) from e

        temp_path = Path(temp_name)
        try:
            with zipfile.ZipFile(temp_path, 'w', zipfile.ZIP_DEFLATED) as zout:
                self._write_entries(zout)
            os.replace(temp_path, output_path)
        except OSError as e:
            raise PackageWriteError(f"cannot write archive: {e}", entry=str(output_path)) from e
        finally:
            if temp_path.exists():
                temp_path.unlink()

        return output_path.stat().st_size

    def _write_entries(self, zout: zipfile.ZipFile):
        graph = self.graph

        # Office expects the manifest first
        self._put(zout, CONTENT_TYPES_ENTRY, graph.content_types.to_xml())

        for info in self.source.infolist():
            if self._skip(info.filename):
                continue
            self._copy(zout, info)

        for key in sorted(graph.media):
            entry = graph.media[key]
            if entry.is_new:
                self._log(f"    Adding new media {key} ({entry.size:,} bytes)")
                self._put(zout, key, entry.payload)

        for kind, slots in graph.rels_collections():
            for number, rels in slots.items():
                if graph.is_removed(kind, number):
                    continue
                self._put(zout, rels_name(kind, number), rels.to_xml())
        self._put(zout, PRESENTATION_RELS_ENTRY, graph.presentation_rels.to_xml())

        for number, tree in graph.masters.items():
            if tree is None:
                self._log(f"    Slide master {number} has been removed")
                continue
            self._put(zout, part_name(PartKind.SLIDE_MASTER, number), serialize_xml(tree))

        self._put(zout, PRESENTATION_ENTRY, serialize_xml(graph.presentation))

    def _skip(self, name: str) -> bool:
        """Whether a source entry must not be copied verbatim."""
        if name in self.graph.owned_entries:
            return True

        if name.startswith(MEDIA_DIR):
            entry = self.graph.media.get(name)
            if entry is None:
                self._log(f"    Media {name} has been removed, skipping it")
                return True
            return entry.is_new

        if name.startswith(PartKind.SLIDE_LAYOUT.directory + "/"):
            try:
                number = part_number(name)
            except PartNameError:
                return False
            if number in self.graph.removed_layouts:
                self._log(f"    Slide layout {name} has been removed, skipping it")
                return True

        return False

    def _copy(self, zout: zipfile.ZipFile, info: zipfile.ZipInfo):
        try:
            data = self.source.read(info)
        except (OSError, zipfile.BadZipFile, zlib.error) as e:
            raise ContainerError(f"cannot read entry: {e}", entry=info.filename) from e

        out_info = zipfile.ZipInfo(info.filename, date_time=info.date_time)
        out_info.compress_type = info.compress_type
        out_info.external_attr = info.external_attr
        self._write(zout, out_info, data)

    def _put(self, zout: zipfile.ZipFile, name: str, data: bytes):
        info = zipfile.ZipInfo(name, date_time=FIXED_DATE_TIME)
        info.compress_type = zipfile.ZIP_DEFLATED
        info.external_attr = 0o644 << 16
        self._write(zout, info, data)

    @staticmethod
    def _write(zout: zipfile.ZipFile, info: zipfile.ZipInfo, data: bytes):
        try:
            zout.writestr(info, data)
        except (OSError, zlib.error) as e:
            raise PackageWriteError(f"cannot write entry: {e}", entry=info.filename) from e

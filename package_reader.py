"""
PPTX Package Reader

Opens a .pptx archive, classifies every entry by part kind and sequence
number, and decodes the parts the optimizer rewrites into a RelationshipGraph.
Everything else stays in the archive and is streamed by the writer.
"""

import zipfile
import zlib
from pathlib import Path
from typing import Optional

from lxml import etree

from errors import ContainerError, PartNameError, StructureError
from package_model import (
    CONTENT_TYPES_ENTRY,
    MEDIA_DIR,
    PRESENTATION_ENTRY,
    PRESENTATION_RELS_ENTRY,
    ContentTypeManifest,
    MediaEntry,
    PartKind,
    RelationshipGraph,
    RelationshipSet,
    parse_xml,
    part_number,
    resolve_target,
    source_part_of,
)

REQUIRED_ENTRIES = (CONTENT_TYPES_ENTRY, PRESENTATION_ENTRY, PRESENTATION_RELS_ENTRY)

# Owning collections whose relationship sets are decoded into the graph
RELS_KINDS = (PartKind.SLIDE, PartKind.SLIDE_LAYOUT, PartKind.SLIDE_MASTER)


class PackageReader:
    """
    Reads a presentation package into a RelationshipGraph.

    The archive stays open until close() (or the end of a with block) so the
    transcoder can read media bytes and the writer can copy untouched entries.
    """

    def __init__(self, path: Path, verbose: bool = False):
        self.path = Path(path)
        self.verbose = verbose
        self.archive: Optional[zipfile.ZipFile] = None

    def __enter__(self) -> "PackageReader":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _log(self, message: str):
        if self.verbose:
            print(message)

    def open(self):
        if self.archive is not None:
            return
        try:
            self.archive = zipfile.ZipFile(self.path, 'r')
        except (OSError, zipfile.BadZipFile) as e:
            raise ContainerError(f"cannot open archive: {e}", entry=str(self.path)) from e

    def close(self):
        if self.archive is not None:
            self.archive.close()
            self.archive = None

    def read_entry(self, name: str) -> bytes:
        """Read one archive entry, raising ContainerError on any failure."""
        try:
            return self.archive.read(name)
        except (KeyError, OSError, zipfile.BadZipFile, zlib.error) as e:
            raise ContainerError(f"cannot read entry: {e}", entry=name) from e

    def read(self) -> RelationshipGraph:
        """
        Decode the archive into a graph.

        Raises:
            ContainerError: archive or entry unreadable
            StructureError: a decoded part is malformed or a required part is missing
        """
        self.open()
        graph = RelationshipGraph()

        for info in self.archive.infolist():
            if info.is_dir():
                continue
            try:
                self._classify(graph, info)
            except PartNameError as e:
                graph.warnings.append(f"Skipped {e}")
                self._log(f"  Warning: skipped {e}")
                # Copied verbatim by the writer, so its media must survive
                if info.filename.endswith(".rels"):
                    self._pin_media(graph, info.filename)

        missing = [name for name in REQUIRED_ENTRIES if name not in graph.owned_entries]
        if missing:
            raise StructureError("package is missing required part", entry=missing[0])

        self._log(f"  Found {len(graph.slide_rels)} slides, {len(graph.layout_rels)} layouts, "
                  f"{len(graph.master_rels)} masters, {len(graph.media)} media files")
        return graph

    def _classify(self, graph: RelationshipGraph, info: zipfile.ZipInfo):
        name = info.filename

        if name.startswith(MEDIA_DIR):
            graph.media[name] = MediaEntry(key=name, size=info.file_size)

        elif name == CONTENT_TYPES_ENTRY:
            graph.content_types = ContentTypeManifest.from_xml(self.read_entry(name), entry=name)
            graph.owned_entries.add(name)

        elif name == PRESENTATION_ENTRY:
            graph.presentation = self._read_tree(name)
            graph.owned_entries.add(name)

        elif name == PRESENTATION_RELS_ENTRY:
            graph.presentation_rels = RelationshipSet.from_xml(self.read_entry(name), entry=name)
            graph.owned_entries.add(name)

        elif self._is_master_body(name):
            number = part_number(name)
            graph.masters[number] = self._read_tree(name)
            graph.owned_entries.add(name)

        elif name.endswith(".rels"):
            kind = self._rels_kind(name)
            if kind is None:
                self._pin_media(graph, name)
                return
            number = part_number(name)
            slots = dict(graph.rels_collections())[kind]
            slots[number] = RelationshipSet.from_xml(self.read_entry(name), entry=name)
            graph.owned_entries.add(name)

    def _read_tree(self, name: str) -> etree._ElementTree:
        return parse_xml(self.read_entry(name), entry=name).getroottree()

    @staticmethod
    def _is_master_body(name: str) -> bool:
        return name.startswith(f"{PartKind.SLIDE_MASTER.directory}/{PartKind.SLIDE_MASTER.value}") \
            and name.endswith(".xml")

    @staticmethod
    def _rels_kind(name: str) -> Optional[PartKind]:
        for kind in RELS_KINDS:
            if name.startswith(f"{kind.directory}/_rels/"):
                return kind
        return None

    def _pin_media(self, graph: RelationshipGraph, name: str):
        """Record media referenced from a relationship set the model does not own."""
        rels = RelationshipSet.from_xml(self.read_entry(name), entry=name)
        source = source_part_of(name)
        for rel in rels:
            if rel.is_external:
                continue
            target = resolve_target(source, rel.target)
            if target.startswith(MEDIA_DIR):
                graph.pinned_media.add(target)
                self._log(f"  {target} is referenced by {name}, keeping it as is")

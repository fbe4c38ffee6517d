"""
PPTX Package Model

In-memory form of the parts of a presentation package that point at each other:
- Relationship sets owned by slides, slide layouts and slide masters
- The presentation relationship set and the presentation XML tree
- Slide master XML trees
- The media index and the content-type manifest

Numbered parts (slide3.xml, slideLayout7.xml, ...) are addressed by the
sequence number in their file name. Numbers are never compacted, so a
PartSlots mapping may have gaps.

Slot states:
- absent:     the number was never seen in the package
- tombstoned: the slot holds an empty RelationshipSet (part removed)
- nulled:     a slide master slot holds None instead of a tree (master removed)

Pruning also records removed numbers in removed_layouts / removed_masters;
the writer decides what to drop from those sets, not from emptiness.
"""

import posixpath
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Set

from lxml import etree

from errors import PartNameError, StructureError

# Namespaces
NAMESPACES = {
    'p': 'http://schemas.openxmlformats.org/presentationml/2006/main',
    'r': 'http://schemas.openxmlformats.org/officeDocument/2006/relationships',
    'rel': 'http://schemas.openxmlformats.org/package/2006/relationships',
    'ct': 'http://schemas.openxmlformats.org/package/2006/content-types',
}

P = f"{{{NAMESPACES['p']}}}"
R = f"{{{NAMESPACES['r']}}}"
REL = f"{{{NAMESPACES['rel']}}}"
CT = f"{{{NAMESPACES['ct']}}}"

# Relationship types
IMAGE_REL_TYPE = NAMESPACES['r'] + "/image"
SLIDE_LAYOUT_REL_TYPE = NAMESPACES['r'] + "/slideLayout"
SLIDE_MASTER_REL_TYPE = NAMESPACES['r'] + "/slideMaster"

# Relationship types whose targets live in the media area. Only image
# relationships are rewritten by transcoding; the others keep their
# targets alive during media pruning.
MEDIA_REL_TYPES = {
    IMAGE_REL_TYPE,
    NAMESPACES['r'] + "/audio",
    NAMESPACES['r'] + "/video",
    "http://schemas.microsoft.com/office/2007/relationships/media",
    "http://schemas.microsoft.com/office/2007/relationships/hdphoto",
}

EXTERNAL_TARGET_MODE = "External"

CONTENT_TYPES_ENTRY = "[Content_Types].xml"
PRESENTATION_ENTRY = "ppt/presentation.xml"
PRESENTATION_RELS_ENTRY = "ppt/_rels/presentation.xml.rels"
MEDIA_DIR = "ppt/media/"

PART_NUMBER_PATTERN = re.compile(r'(?:^|/)[a-zA-Z]+([0-9]+)\.xml')


class PartKind(Enum):
    """Kinds of parts the package model tracks."""
    SLIDE = "slide"
    SLIDE_LAYOUT = "slideLayout"
    SLIDE_MASTER = "slideMaster"
    MEDIA = "media"
    PRESENTATION = "presentation"
    CONTENT_TYPES = "contentTypes"

    @property
    def directory(self) -> str:
        return f"ppt/{self.value}s"


def part_number(name: str) -> int:
    """
    Extract the 1-based sequence number from a part name or target.

    "ppt/slides/_rels/slide3.xml.rels" -> 3
    "../slideLayouts/slideLayout12.xml" -> 12

    Raises:
        PartNameError: if the name carries no sequence number
    """
    match = PART_NUMBER_PATTERN.search(name)
    if match is None:
        raise PartNameError("part name has no sequence number", entry=name)
    number = int(match.group(1))
    if number < 1:
        raise PartNameError("part sequence numbers start at 1", entry=name)
    return number


def part_name(kind: PartKind, number: int) -> str:
    """Canonical archive name of a numbered part."""
    return f"{kind.directory}/{kind.value}{number}.xml"


def rels_name(kind: PartKind, number: int) -> str:
    """Canonical archive name of a numbered part's relationship set."""
    return f"{kind.directory}/_rels/{kind.value}{number}.xml.rels"


def source_part_of(rels_entry: str) -> str:
    """Name of the part that owns a relationship entry."""
    rels_dir, rels_file = posixpath.split(rels_entry)
    return posixpath.join(posixpath.dirname(rels_dir), rels_file[:-len(".rels")])


def resolve_target(source_part: str, target: str) -> str:
    """Resolve a relationship target to an archive name (no leading slash)."""
    if target.startswith("/"):
        return posixpath.normpath(target).lstrip("/")
    base = posixpath.dirname(source_part)
    return posixpath.normpath(posixpath.join(base, target))


def media_key(target: str) -> str:
    """Media index key for a relationship target, matched by base name."""
    return MEDIA_DIR + posixpath.basename(target)


# =============================================================================
# XML helpers
# =============================================================================

def parse_xml(data: bytes, entry: Optional[str] = None) -> etree._Element:
    """
    Parse XML bytes into an element.

    Raises:
        StructureError: if the bytes are not well-formed XML
    """
    parser = etree.XMLParser(remove_blank_text=False, resolve_entities=False)
    try:
        return etree.fromstring(data, parser)
    except etree.XMLSyntaxError as e:
        raise StructureError(f"malformed XML: {e}", entry=entry) from e


def serialize_xml(node) -> bytes:
    return etree.tostring(node, xml_declaration=True, encoding="UTF-8", standalone=True)


def attribute_equals(attr: str, value: str) -> Callable[[etree._Element], bool]:
    return lambda elem: elem.get(attr) == value


def remove_elements(root: etree._Element, tag: str,
                    predicate: Callable[[etree._Element], bool]) -> int:
    """
    Remove every element with the given tag that satisfies predicate.

    Returns the number of elements removed, so a caller can tell a missing
    reference apart from a successful removal.
    """
    matches = [elem for elem in root.iter(tag) if predicate(elem)]
    removed = 0
    for elem in matches:
        parent = elem.getparent()
        if parent is None:
            continue
        # Keep text that follows the element
        if elem.tail and elem.tail.strip():
            prev = elem.getprevious()
            if prev is not None:
                prev.tail = (prev.tail or "") + elem.tail
            else:
                parent.text = (parent.text or "") + elem.tail
        parent.remove(elem)
        removed += 1
    return removed


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class Relationship:
    """A typed reference from one part to another part or external resource."""
    id: str
    type: str
    target: str
    target_mode: Optional[str] = None

    @property
    def is_external(self) -> bool:
        return self.target_mode == EXTERNAL_TARGET_MODE

    @property
    def base_name(self) -> str:
        return posixpath.basename(self.target)


@dataclass
class RelationshipSet:
    """Ordered relationships owned by one part. Empty means removed."""
    relationships: List[Relationship] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.relationships)

    def __iter__(self) -> Iterator[Relationship]:
        return iter(self.relationships)

    @property
    def is_empty(self) -> bool:
        return not self.relationships

    def of_type(self, rel_type: str) -> List[Relationship]:
        return [rel for rel in self.relationships if rel.type == rel_type]

    def find(self, predicate: Callable[[Relationship], bool]) -> Optional[Relationship]:
        for rel in self.relationships:
            if predicate(rel):
                return rel
        return None

    def remove(self, rel: Relationship):
        self.relationships.remove(rel)

    def replace_target(self, old_base: str, new_base: str) -> int:
        """
        Point every internal target whose base name is old_base at new_base,
        keeping the directory part. Returns the number of targets rewritten.
        """
        count = 0
        for rel in self.relationships:
            if rel.is_external or rel.base_name != old_base:
                continue
            rel.target = rel.target[:-len(old_base)] + new_base
            count += 1
        return count

    @classmethod
    def from_xml(cls, data: bytes, entry: Optional[str] = None) -> "RelationshipSet":
        root = parse_xml(data, entry)
        if root.tag != f"{REL}Relationships":
            raise StructureError(f"expected Relationships root, found {root.tag}", entry=entry)

        relationships = []
        for elem in root.findall(f"{REL}Relationship"):
            rid = elem.get('Id')
            rel_type = elem.get('Type')
            target = elem.get('Target')
            if not rid or not rel_type or target is None:
                raise StructureError("relationship is missing Id, Type or Target", entry=entry)
            relationships.append(Relationship(
                id=rid,
                type=rel_type,
                target=target,
                target_mode=elem.get('TargetMode'),
            ))
        return cls(relationships)

    def to_xml(self) -> bytes:
        root = etree.Element(f"{REL}Relationships", nsmap={None: NAMESPACES['rel']})
        for rel in self.relationships:
            elem = etree.SubElement(root, f"{REL}Relationship")
            elem.set('Id', rel.id)
            elem.set('Type', rel.type)
            elem.set('Target', rel.target)
            if rel.target_mode:
                elem.set('TargetMode', rel.target_mode)
        return serialize_xml(root)


@dataclass
class MediaEntry:
    """
    One file in the media area.

    payload is None for files copied unchanged from the source archive and
    holds the bytes of newly produced content (e.g. a transcoded image).
    """
    key: str
    size: int
    payload: Optional[bytes] = None

    @property
    def is_new(self) -> bool:
        return self.payload is not None


@dataclass
class ContentTypeManifest:
    """The [Content_Types].xml table."""
    defaults: Dict[str, str] = field(default_factory=dict)   # extension -> content type
    overrides: Dict[str, str] = field(default_factory=dict)  # part name -> content type

    def has_override(self, part: str) -> bool:
        return part in self.overrides

    def remove_override(self, part: str) -> bool:
        """Remove the override for a part name. Returns False if none existed."""
        return self.overrides.pop(part, None) is not None

    def has_default(self, extension: str) -> bool:
        extension = extension.lstrip(".").lower()
        return any(ext.lower() == extension for ext in self.defaults)

    def ensure_default(self, extension: str, content_type: str) -> bool:
        """Add an extension default if missing. Returns True if one was added."""
        if self.has_default(extension):
            return False
        self.defaults[extension.lstrip(".").lower()] = content_type
        return True

    @classmethod
    def from_xml(cls, data: bytes, entry: str = CONTENT_TYPES_ENTRY) -> "ContentTypeManifest":
        root = parse_xml(data, entry)
        if root.tag != f"{CT}Types":
            raise StructureError(f"expected Types root, found {root.tag}", entry=entry)

        manifest = cls()
        for elem in root:
            if elem.tag == f"{CT}Default":
                extension = elem.get('Extension')
                content_type = elem.get('ContentType')
                if not extension or not content_type:
                    raise StructureError("Default is missing Extension or ContentType", entry=entry)
                manifest.defaults[extension] = content_type
            elif elem.tag == f"{CT}Override":
                part = elem.get('PartName')
                content_type = elem.get('ContentType')
                if not part or not content_type:
                    raise StructureError("Override is missing PartName or ContentType", entry=entry)
                manifest.overrides[part] = content_type
        return manifest

    def to_xml(self) -> bytes:
        root = etree.Element(f"{CT}Types", nsmap={None: NAMESPACES['ct']})
        for extension, content_type in self.defaults.items():
            elem = etree.SubElement(root, f"{CT}Default")
            elem.set('Extension', extension)
            elem.set('ContentType', content_type)
        for part, content_type in self.overrides.items():
            elem = etree.SubElement(root, f"{CT}Override")
            elem.set('PartName', part)
            elem.set('ContentType', content_type)
        return serialize_xml(root)


class PartSlots:
    """Sparse mapping from part sequence number to a value."""

    def __init__(self):
        self._slots = {}

    def __setitem__(self, number: int, value):
        if number < 1:
            raise ValueError(f"part numbers start at 1, got {number}")
        self._slots[number] = value

    def __getitem__(self, number: int):
        return self._slots[number]

    def __contains__(self, number) -> bool:
        return number in self._slots

    def __len__(self) -> int:
        return len(self._slots)

    def get(self, number: int, default=None):
        return self._slots.get(number, default)

    def numbers(self) -> List[int]:
        return sorted(self._slots)

    def items(self) -> list:
        return [(number, self._slots[number]) for number in self.numbers()]

    def values(self) -> list:
        return [self._slots[number] for number in self.numbers()]


# =============================================================================
# Relationship Graph
# =============================================================================

class RelationshipGraph:
    """
    The addressable model of one package.

    Slides are the roots: layouts are reachable only from slides, masters only
    from layouts, and media from any of the three.
    """

    def __init__(self):
        self.slide_rels = PartSlots()
        self.layout_rels = PartSlots()
        self.master_rels = PartSlots()
        self.masters = PartSlots()
        self.presentation_rels = RelationshipSet()
        self.presentation: Optional[etree._ElementTree] = None
        self.media: Dict[str, MediaEntry] = {}
        self.content_types = ContentTypeManifest()

        # Archive entries decoded into the model and re-emitted by the writer
        self.owned_entries: Set[str] = set()
        # Media referenced from relationship sets outside the model
        self.pinned_media: Set[str] = set()
        # Slots removed by pruning. A layout whose input rels are empty is
        # indistinguishable from a tombstone, so removal is recorded here too.
        self.removed_layouts: Set[int] = set()
        self.removed_masters: Set[int] = set()
        self.warnings: List[str] = []

    def rels_collections(self) -> list:
        """(kind, slots) for every owning collection, in slide/layout/master order."""
        return [
            (PartKind.SLIDE, self.slide_rels),
            (PartKind.SLIDE_LAYOUT, self.layout_rels),
            (PartKind.SLIDE_MASTER, self.master_rels),
        ]

    def all_relationship_sets(self) -> Iterator[RelationshipSet]:
        for _, slots in self.rels_collections():
            yield from slots.values()

    @staticmethod
    def _target_number(rel: Relationship) -> Optional[int]:
        if rel.is_external:
            return None
        try:
            return part_number(rel.target)
        except PartNameError:
            return None

    def _used_slots(self, sources: PartSlots, rel_type: str, targets: PartSlots) -> Dict[int, bool]:
        used = {number: False for number in targets.numbers()}
        for rels in sources.values():
            for rel in rels.of_type(rel_type):
                number = self._target_number(rel)
                if number in used:
                    used[number] = True
        return used

    def used_layouts(self) -> Dict[int, bool]:
        """For every layout slot, whether some slide references it."""
        return self._used_slots(self.slide_rels, SLIDE_LAYOUT_REL_TYPE, self.layout_rels)

    def used_masters(self) -> Dict[int, bool]:
        """For every master slot, whether some layout references it."""
        return self._used_slots(self.layout_rels, SLIDE_MASTER_REL_TYPE, self.master_rels)

    def used_media(self) -> Set[str]:
        """Media keys referenced by any slide, layout or master relationship set."""
        used = set(self.pinned_media)
        for rels in self.all_relationship_sets():
            for rel in rels:
                if rel.type in MEDIA_REL_TYPES and not rel.is_external:
                    used.add(media_key(rel.target))
        return used

    def unused_layouts(self) -> List[int]:
        """Live (not removed) layout slots no slide references."""
        return [number for number, used in sorted(self.used_layouts().items())
                if not used and number not in self.removed_layouts]

    def unused_masters(self) -> List[int]:
        """Live master slots no layout references."""
        return [number for number, used in sorted(self.used_masters().items())
                if not used and number not in self.removed_masters]

    def unused_media(self) -> List[str]:
        used = self.used_media()
        return sorted(key for key in self.media if key not in used)

    def is_removed(self, kind: PartKind, number: int) -> bool:
        if kind is PartKind.SLIDE_LAYOUT:
            return number in self.removed_layouts
        if kind is PartKind.SLIDE_MASTER:
            return number in self.removed_masters
        return False

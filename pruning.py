"""
PPTX Pruning Engine

Removes slide layouts, slide masters and media files that no surviving slide
can reach, keeping every remaining cross-reference consistent.

Removal order matters:
1. Layouts  - usage depends only on slide relationships
2. Masters  - usage depends on the layouts left after step 1
3. Media    - usage depends on the slides, layouts and masters left after 1 and 2

Each part kind has one transaction function (remove_layout, remove_master)
that updates the manifest, the parent relationship set, the parent XML tree
and the part's own slot together. Both are idempotent.
"""

from dataclasses import dataclass, field
from typing import Callable, List

from errors import InvariantError
from package_model import (
    PRESENTATION_ENTRY,
    P,
    R,
    PartKind,
    Relationship,
    RelationshipGraph,
    RelationshipSet,
    attribute_equals,
    part_name,
    remove_elements,
    resolve_target,
)


@dataclass
class PruneResult:
    """What the pruning phases removed."""
    layouts_removed: List[int] = field(default_factory=list)
    masters_removed: List[int] = field(default_factory=list)
    media_removed: List[str] = field(default_factory=list)
    bytes_saved: int = 0


def refers_to(source_part: str, target_part: str) -> Callable[[Relationship], bool]:
    """Predicate matching internal relationships of source_part that resolve to target_part."""
    return lambda rel: (not rel.is_external
                        and resolve_target(source_part, rel.target) == target_part)


class PruningEngine:
    """Removes unreachable parts from a RelationshipGraph."""

    def __init__(self, graph: RelationshipGraph, verbose: bool = False):
        self.graph = graph
        self.verbose = verbose
        self.result = PruneResult()

    def _log(self, message: str):
        if self.verbose:
            print(message)

    def prune(self,
              remove_layouts: bool = True,
              remove_masters: bool = True,
              remove_media: bool = True) -> PruneResult:
        """Run the requested phases in dependency order."""
        if remove_layouts:
            self.remove_unused_layouts()
        if remove_masters:
            self.remove_unused_masters()
        if remove_media:
            self.remove_unused_media()
        return self.result

    # =========================================================================
    # Slide layouts
    # =========================================================================

    def remove_unused_layouts(self) -> List[int]:
        removed = self.graph.unused_layouts()
        for number in removed:
            self._log(f"  Removing unused slide layout {number}")
            self.remove_layout(number)
        self.result.layouts_removed.extend(removed)
        return removed

    def remove_layout(self, number: int):
        """
        Remove slide layout `number` from the model.

        - Drops its content-type override
        - Drops the referencing relationship and sldLayoutId element from
          every slide master that lists it (first match per master)
        - Tombstones its relationship set and records the number in
          graph.removed_layouts, which tells the writer to skip both the
          layout body and its relationship entry

        A master that lists the same layout twice keeps the second entry.

        Raises:
            InvariantError: a master relationship points at the layout but the
                master document has no matching sldLayoutId element
        """
        layout_part = part_name(PartKind.SLIDE_LAYOUT, number)
        self.graph.content_types.remove_override("/" + layout_part)

        for master_number, rels in self.graph.master_rels.items():
            master_part = part_name(PartKind.SLIDE_MASTER, master_number)
            rel = rels.find(refers_to(master_part, layout_part))
            if rel is None:
                continue

            tree = self.graph.masters.get(master_number)
            if tree is None:
                raise InvariantError(
                    f"references slide layout {number} but has no document tree",
                    entry=master_part)
            if remove_elements(tree.getroot(), f"{P}sldLayoutId",
                               attribute_equals(f"{R}id", rel.id)) == 0:
                raise InvariantError(
                    f"no sldLayoutId with r:id={rel.id} for slide layout {number}",
                    entry=master_part)
            rels.remove(rel)
            self._log(f"    Unlinked from slide master {master_number} ({rel.id})")

        if number in self.graph.layout_rels:
            self.graph.layout_rels[number] = RelationshipSet()
        self.graph.removed_layouts.add(number)

    # =========================================================================
    # Slide masters
    # =========================================================================

    def remove_unused_masters(self) -> List[int]:
        removed = self.graph.unused_masters()
        for number in removed:
            self._log(f"  Removing unused slide master {number}")
            self.remove_master(number)
        self.result.masters_removed.extend(removed)
        return removed

    def remove_master(self, number: int):
        """
        Remove slide master `number` from the model.

        - Drops its content-type override
        - Drops the presentation relationship and sldMasterId element
        - Tombstones its relationship set and nulls its document tree

        Raises:
            InvariantError: the presentation relationship exists but the
                presentation document has no matching sldMasterId element
        """
        master_part = part_name(PartKind.SLIDE_MASTER, number)
        self.graph.content_types.remove_override("/" + master_part)

        rel = self.graph.presentation_rels.find(refers_to(PRESENTATION_ENTRY, master_part))
        if rel is not None:
            if self.graph.presentation is None:
                raise InvariantError("presentation document is missing", entry=PRESENTATION_ENTRY)
            if remove_elements(self.graph.presentation.getroot(), f"{P}sldMasterId",
                               attribute_equals(f"{R}id", rel.id)) == 0:
                raise InvariantError(
                    f"no sldMasterId with r:id={rel.id} for slide master {number}",
                    entry=PRESENTATION_ENTRY)
            self.graph.presentation_rels.remove(rel)
            self._log(f"    Unlinked from presentation ({rel.id})")

        if number in self.graph.master_rels:
            self.graph.master_rels[number] = RelationshipSet()
        if number in self.graph.masters:
            self.graph.masters[number] = None
        self.graph.removed_masters.add(number)

    # =========================================================================
    # Media
    # =========================================================================

    def remove_unused_media(self) -> List[str]:
        removed = self.graph.unused_media()
        for key in removed:
            entry = self.graph.media.pop(key)
            self.graph.content_types.remove_override("/" + key)
            self.result.bytes_saved += entry.size
            self._log(f"  Removing unused media {key} ({entry.size:,} bytes)")
        self.result.media_removed.extend(removed)
        return removed

"""
PPTX Media Transcoder

Converts uncompressed raster media (TIFF, BMP) to a lossless compressed
format (PNG by default), renames the media entry and repoints every
slide, layout and master relationship that targeted the old file name.

Must run before pruning: reachability and manifest consistency are computed
against the post-transcode names.

A new name that is already taken (image1.tif next to image1.tiff, or an
existing image1.png) raises MediaCodecError and aborts the whole run; no
entry is overwritten.
"""

import io
import posixpath
from dataclasses import dataclass
from typing import Callable, Iterable, List

from PIL import Image

from errors import MediaCodecError
from package_model import MediaEntry, RelationshipGraph

DEFAULT_EXTENSIONS = (".tiff", ".tif", ".bmp")

# Modes Pillow can write to PNG without conversion
PNG_MODES = {"1", "L", "LA", "I", "I;16", "P", "RGB", "RGBA"}


@dataclass
class TranscodeRecord:
    """One converted media file."""
    old_key: str
    new_key: str
    old_size: int
    new_size: int
    relationships_updated: int = 0

    @property
    def bytes_saved(self) -> int:
        return self.old_size - self.new_size


class MediaTranscoder:
    """
    Re-encodes eligible media entries in place in a RelationshipGraph.

    read_entry is called with a media key and must return the original bytes;
    normally PackageReader.read_entry.
    """

    def __init__(self,
                 read_entry: Callable[[str], bytes],
                 extensions: Iterable[str] = DEFAULT_EXTENSIONS,
                 target_extension: str = ".png",
                 target_format: str = "PNG",
                 content_type: str = "image/png",
                 optimize: bool = False,
                 verbose: bool = False):
        self.read_entry = read_entry
        self.extensions = {ext.lower() for ext in extensions}
        self.target_extension = target_extension
        self.target_format = target_format
        self.content_type = content_type
        self.optimize = optimize
        self.verbose = verbose

    @classmethod
    def from_config(cls, read_entry: Callable[[str], bytes], config: dict,
                    verbose: bool = False) -> "MediaTranscoder":
        """Build a transcoder from the 'transcode' section of the configuration."""
        return cls(
            read_entry,
            extensions=config.get('extensions', DEFAULT_EXTENSIONS),
            target_extension=config.get('target_extension', ".png"),
            target_format=config.get('target_format', "PNG"),
            content_type=config.get('content_type', "image/png"),
            optimize=config.get('optimize', False),
            verbose=verbose,
        )

    def _log(self, message: str):
        if self.verbose:
            print(message)

    def eligible(self, graph: RelationshipGraph) -> List[str]:
        """
        Media keys that would be transcoded, in sorted order.

        Media referenced from parts outside the graph is left alone: those
        relationships are copied verbatim and could not be repointed.
        """
        return sorted(
            key for key in graph.media
            if posixpath.splitext(key)[1].lower() in self.extensions
            and key not in graph.pinned_media
        )

    def transcode(self, graph: RelationshipGraph) -> List[TranscodeRecord]:
        """
        Transcode every eligible media entry.

        Raises:
            MediaCodecError: an entry cannot be decoded or encoded, or its new
                name is already taken
        """
        records = []
        for key in self.eligible(graph):
            records.append(self._transcode_entry(graph, key))

        if records and graph.content_types.ensure_default(self.target_extension, self.content_type):
            self._log(f"  Added {self.target_extension} default content type")
        return records

    def _transcode_entry(self, graph: RelationshipGraph, key: str) -> TranscodeRecord:
        new_key = posixpath.splitext(key)[0] + self.target_extension
        if new_key in graph.media:
            raise MediaCodecError(f"cannot rename to {new_key}, the name is already in use", entry=key)

        old_size = graph.media[key].size
        self._log(f"  Converting {key} ({old_size:,} bytes) to {self.target_format}...")

        payload = self.encode(self.decode(self.read_entry(key), key), key)

        del graph.media[key]
        graph.media[new_key] = MediaEntry(key=new_key, size=len(payload), payload=payload)
        if graph.content_types.remove_override("/" + key):
            graph.content_types.overrides["/" + new_key] = self.content_type

        old_base = posixpath.basename(key)
        new_base = posixpath.basename(new_key)
        updated = sum(rels.replace_target(old_base, new_base)
                      for rels in graph.all_relationship_sets())

        self._log(f"    {new_key}: {len(payload):,} bytes, {updated} relationships updated")
        return TranscodeRecord(
            old_key=key,
            new_key=new_key,
            old_size=old_size,
            new_size=len(payload),
            relationships_updated=updated,
        )

    def decode(self, data: bytes, key: str) -> Image.Image:
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise MediaCodecError(f"cannot decode image: {e}", entry=key) from e
        return image

    def encode(self, image: Image.Image, key: str) -> bytes:
        if image.mode not in PNG_MODES:
            image = image.convert("RGBA" if "A" in image.getbands() else "RGB")
        out = io.BytesIO()
        try:
            image.save(out, format=self.target_format, optimize=self.optimize)
        except (OSError, ValueError, KeyError) as e:
            raise MediaCodecError(f"cannot encode {self.target_format}: {e}", entry=key) from e
        return out.getvalue()

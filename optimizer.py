"""
PPTX Optimizer Pipeline

Runs one package through read -> transcode -> prune -> write.

Strategy:
1. Read the archive into a RelationshipGraph
2. Transcode eligible media (renames keys, repoints relationships)
3. Remove unused layouts, then masters, then media
4. Write a new archive next to the input

The first PackageError aborts the run; it is recorded in the result and no
output file is produced.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from errors import ContainerError, PackageError, PackageWriteError
from media_transcoder import MediaTranscoder, TranscodeRecord
from package_model import RelationshipGraph
from package_reader import PackageReader
from package_writer import PackageWriter
from pruning import PruningEngine

DEFAULT_OUTPUT_SUFFIX = ".new"


def derive_output_path(input_path: Path, suffix: str = DEFAULT_OUTPUT_SUFFIX) -> Path:
    """deck.pptx -> deck.new.pptx"""
    input_path = Path(input_path)
    return input_path.with_name(f"{input_path.stem}{suffix}{input_path.suffix}")


@dataclass
class OptimizeOptions:
    """Which optimizations to run."""
    transcode_media: bool = False
    remove_layouts: bool = False
    remove_masters: bool = False
    remove_media: bool = False

    @classmethod
    def all(cls) -> "OptimizeOptions":
        return cls(True, True, True, True)

    @property
    def any(self) -> bool:
        return self.transcode_media or self.remove_layouts or self.remove_masters or self.remove_media


@dataclass
class OptimizationResult:
    """Results from optimizing one package."""
    input_path: Path
    output_path: Optional[Path]
    dry_run: bool = False
    input_size: int = 0
    output_size: int = 0
    transcoded: List[TranscodeRecord] = field(default_factory=list)
    pending_transcode: List[str] = field(default_factory=list)
    layouts_removed: List[int] = field(default_factory=list)
    masters_removed: List[int] = field(default_factory=list)
    media_removed: List[str] = field(default_factory=list)
    media_bytes_saved: int = 0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    def to_dict(self) -> dict:
        """Convert to dictionary for YAML reports."""
        return {
            'input': {'path': str(self.input_path), 'size_bytes': self.input_size},
            'output': {
                'path': str(self.output_path) if self.output_path and not self.dry_run else None,
                'size_bytes': self.output_size,
            },
            'dry_run': self.dry_run,
            'transcoded': [
                {
                    'from': r.old_key,
                    'to': r.new_key,
                    'old_size_bytes': r.old_size,
                    'new_size_bytes': r.new_size,
                    'relationships_updated': r.relationships_updated,
                }
                for r in self.transcoded
            ],
            'pending_transcode': list(self.pending_transcode),
            'removed': {
                'slide_layouts': list(self.layouts_removed),
                'slide_masters': list(self.masters_removed),
                'media': list(self.media_removed),
            },
            'media_bytes_saved': self.media_bytes_saved,
            'warnings': list(self.warnings),
            'errors': list(self.errors),
            'success': self.success,
        }


class PackageOptimizer:
    """Optimizes .pptx packages according to OptimizeOptions."""

    def __init__(self, options: OptimizeOptions, transcode_config: Optional[dict] = None,
                 verbose: bool = False):
        self.options = options
        self.transcode_config = transcode_config or {}
        self.verbose = verbose

    def process(self, input_path: Path, output_path: Optional[Path] = None,
                dry_run: bool = False) -> OptimizationResult:
        """
        Optimize a package.

        Args:
            input_path: Path to input .pptx
            output_path: Path for output .pptx (default: derived from input)
            dry_run: If True, only report what would change

        Returns:
            OptimizationResult with details of what was done
        """
        input_path = Path(input_path)
        if output_path is None:
            output_path = derive_output_path(input_path)
        output_path = Path(output_path)

        result = OptimizationResult(input_path=input_path, output_path=output_path, dry_run=dry_run)

        try:
            if not dry_run and output_path.resolve() == input_path.resolve():
                raise PackageWriteError("output path must differ from the input path",
                                        entry=str(output_path))
            try:
                result.input_size = input_path.stat().st_size
            except OSError as e:
                raise ContainerError(f"cannot access input: {e}", entry=str(input_path)) from e

            with PackageReader(input_path, verbose=self.verbose) as reader:
                graph = reader.read()
                result.warnings.extend(graph.warnings)

                self._optimize(graph, reader, result, dry_run)

                if not dry_run:
                    writer = PackageWriter(graph, reader.archive, verbose=self.verbose)
                    result.output_size = writer.write(output_path)

        except PackageError as e:
            result.errors.append(str(e))

        return result

    def _optimize(self, graph: RelationshipGraph, reader: PackageReader,
                  result: OptimizationResult, dry_run: bool):
        options = self.options

        if options.transcode_media:
            transcoder = MediaTranscoder.from_config(reader.read_entry, self.transcode_config,
                                                     verbose=self.verbose)
            if dry_run:
                result.pending_transcode = transcoder.eligible(graph)
            else:
                result.transcoded = transcoder.transcode(graph)

        engine = PruningEngine(graph, verbose=self.verbose)
        pruned = engine.prune(
            remove_layouts=options.remove_layouts,
            remove_masters=options.remove_masters,
            remove_media=options.remove_media,
        )
        result.layouts_removed = pruned.layouts_removed
        result.masters_removed = pruned.masters_removed
        result.media_removed = pruned.media_removed
        result.media_bytes_saved = pruned.bytes_saved

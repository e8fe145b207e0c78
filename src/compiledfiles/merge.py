"""
Merge per-unit results into one ordered, duplicate-free set of source files.
"""

from typing import Iterable, Iterator, Optional

from compiledfiles.models import ExtractionWarning, SourceFile, UnitResult


class ResultSet:
    """Insertion-ordered set of source files keyed by exact path string.

    The first occurrence of a path wins (including its metadata); later
    duplicates are ignored and nothing is ever reordered.
    """

    def __init__(self, files: Iterable[SourceFile] = ()):
        self._files: dict[str, SourceFile] = {}
        for source_file in files:
            self.add(source_file)

    def add(self, source_file: SourceFile) -> bool:
        """Insert a file unless its path is already present.

        Returns:
            True if the file was added
        """
        if source_file.path in self._files:
            return False
        self._files[source_file.path] = source_file
        return True

    def __iter__(self) -> Iterator[str]:
        return iter(self._files)

    def __len__(self):
        return len(self._files)

    def __contains__(self, path) -> bool:
        return path in self._files

    def __eq__(self, other):
        if isinstance(other, ResultSet):
            return list(self._files.values()) == list(other._files.values())
        return NotImplemented

    def __repr__(self):
        return f"ResultSet({list(self._files)!r})"

    @property
    def paths(self) -> list[str]:
        return list(self._files)

    @property
    def files(self) -> list[SourceFile]:
        return list(self._files.values())

    def get(self, path: str) -> Optional[SourceFile]:
        return self._files.get(path)


def merge_unit_results(results: Iterable[UnitResult]) -> tuple[ResultSet, list[ExtractionWarning]]:
    """Combine unit results in unit index order.

    Results are reassembled by their index, not by arrival order, so output
    is identical however the units were scheduled.

    Returns:
        (merged files, all unit warnings in unit order)
    """
    merged = ResultSet()
    warnings = []
    for result in sorted(results, key=lambda r: r.index):
        for source_file in result.files:
            merged.add(source_file)
        warnings.extend(result.warnings)
    return merged, warnings

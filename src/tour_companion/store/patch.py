"""Typed multi-path updates for the backend tree store."""

from typing import Any, Iterator, List, Sequence, Tuple, Union

from ..exceptions import PatchConflictError
from ..notifications.validation import require_store_key


class _Delete:
    """Marker value that removes the node at a path."""

    def __repr__(self) -> str:
        return "DELETE"


DELETE = _Delete()

PathLike = Union[str, Sequence[str]]


def split_path(path: PathLike) -> Tuple[str, ...]:
    """Turn ``"a/b/c"`` or ``("a", "b", "c")`` into validated segments.

    Raises:
        InvalidKeyError: If any segment is empty or contains a reserved character
    """
    if isinstance(path, str):
        segments = tuple(segment for segment in path.strip("/").split("/"))
    else:
        segments = tuple(path)

    if not segments:
        raise PatchConflictError("", "empty path")

    for segment in segments:
        require_store_key(segment, "path segment")
    return segments


class PatchSet:
    """Ordered set of path operations applied together or not at all.

    Segments are validated when an operation is added, so a PatchSet that
    exists can only address well-formed keys. Setting the same path twice
    keeps the last value; a path nested inside another path of the same
    set is rejected.
    """

    def __init__(self):
        self._operations: List[Tuple[Tuple[str, ...], Any]] = []

    def set(self, path: PathLike, value: Any) -> "PatchSet":
        """Add a write of ``value`` at ``path``. Returns self for chaining."""
        self._add(split_path(path), value)
        return self

    def delete(self, path: PathLike) -> "PatchSet":
        """Add a removal of the node at ``path``. Returns self for chaining."""
        self._add(split_path(path), DELETE)
        return self

    @property
    def paths(self) -> List[str]:
        return ["/".join(segments) for segments, _ in self._operations]

    @property
    def operations(self) -> List[Tuple[Tuple[str, ...], Any]]:
        return list(self._operations)

    def _add(self, segments: Tuple[str, ...], value: Any) -> None:
        for index, (existing, _) in enumerate(self._operations):
            if existing == segments:
                self._operations[index] = (segments, value)
                return
            shorter = min(len(existing), len(segments))
            if existing[:shorter] == segments[:shorter]:
                raise PatchConflictError(
                    "/".join(segments), f"overlaps with {'/'.join(existing)}")
        self._operations.append((segments, value))

    def __len__(self) -> int:
        return len(self._operations)

    def __iter__(self) -> Iterator[Tuple[Tuple[str, ...], Any]]:
        return iter(list(self._operations))

    def __repr__(self) -> str:
        return f"PatchSet({self.paths})"

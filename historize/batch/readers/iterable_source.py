"""
In-memory row source.
"""

from typing import Any, Iterable, Iterator, Mapping


class IterableSource:
    """
    Wraps already-materialized rows (fixtures, rows produced upstream in
    the same process) so they can be fed to an entity run.
    """

    def __init__(self, rows: Iterable[Mapping[str, Any]]):
        self.rows = rows

    def iter_rows(self) -> Iterator[dict[str, Any]]:
        for row in self.rows:
            yield dict(row)

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return self.iter_rows()

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Query:
    """
    Declarative collection query shared by both backends (one-shot fetch and listeners).

    kind:
      - "where_in": field in values
      - "range":    lo <= field < hi
      - "recent":   newest first by timestamp, at most `limit`
    """
    kind: str
    field: str = ""
    values: Tuple[str, ...] = ()
    lo: str = ""
    hi: str = ""
    limit: int = 0

    @classmethod
    def where_in(cls, field: str, values) -> "Query":
        return cls("where_in", field=field, values=tuple(values))

    @classmethod
    def range(cls, field: str, lo: str, hi: str) -> "Query":
        return cls("range", field=field, lo=lo, hi=hi)

    @classmethod
    def recent(cls, limit: int) -> "Query":
        return cls("recent", field="timestamp", limit=int(limit))

    def run(self, backend: Any, collection: str) -> List[Dict[str, Any]]:
        if self.kind == "where_in":
            return backend.where_in(collection, self.field, list(self.values))
        if self.kind == "range":
            return backend.range_query(collection, self.field, self.lo, self.hi)
        if self.kind == "recent":
            return backend.list_recent(collection, self.limit)
        raise ValueError(f"unknown query kind: {self.kind!r}")

    def describe(self) -> str:
        if self.kind == "where_in":
            return f"{self.field} in [{len(self.values)}]"
        if self.kind == "range":
            return f"{self.lo} <= {self.field} < {self.lo}+"
        return f"recent limit={self.limit}"


def run_query(backend: Any, collection: str, query: Optional[Query]) -> List[Dict[str, Any]]:
    """No query means "whole collection, newest first"."""
    if query is None:
        return backend.list_recent(collection, 0)
    return query.run(backend, collection)

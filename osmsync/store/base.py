from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any
from typing import Protocol
from typing import TypeVar

from osmsync.osm.types import Header
from osmsync.osm.types import OsmNode
from osmsync.osm.types import OsmRelation
from osmsync.osm.types import OsmWay

E_contra = TypeVar("E_contra", contravariant=True)


class EntityTable(Protocol[E_contra]):
    """Bulk writes for one entity type. Each call is atomic on its own."""

    def upsert_batch(self, entities: Sequence[E_contra]) -> None: ...

    def delete_batch(self, ids: Sequence[int]) -> None: ...


class HeaderTable(Protocol):
    def read(self) -> Header | None: ...

    def write(self, header: Header) -> None: ...


@dataclass
class Store:
    headers: HeaderTable
    nodes: EntityTable[OsmNode]
    ways: EntityTable[OsmWay]
    relations: EntityTable[OsmRelation]

    def close(self) -> None:
        for table in (self.headers, self.nodes, self.ways, self.relations):
            close = getattr(table, "close", None)
            if close is not None:
                close()

    def __enter__(self) -> Store:
        return self

    def __exit__(self, exc_type: Any, exc_value: Any, traceback: Any) -> None:
        self.close()

from __future__ import annotations

from collections.abc import Sequence
from typing import Generic
from typing import TypeVar

from osmsync.osm.types import Header
from osmsync.osm.types import OsmNode
from osmsync.osm.types import OsmRelation
from osmsync.osm.types import OsmWay
from osmsync.store.base import Store

E = TypeVar("E", OsmNode, OsmWay, OsmRelation)


class MemoryTable(Generic[E]):
    def __init__(self) -> None:
        self.rows: dict[int, E] = {}

    def upsert_batch(self, entities: Sequence[E]) -> None:
        self.rows.update((entity.id, entity) for entity in entities)

    def delete_batch(self, ids: Sequence[int]) -> None:
        for id in ids:
            self.rows.pop(id, None)

    def get(self, id: int) -> E | None:
        return self.rows.get(id)

    def __len__(self) -> int:
        return len(self.rows)


class MemoryHeaderTable:
    def __init__(self, header: Header | None = None) -> None:
        self.header = header

    def read(self) -> Header | None:
        return self.header

    def write(self, header: Header) -> None:
        self.header = header


class MemoryStore(Store):
    def __init__(self, header: Header | None = None) -> None:
        super().__init__(
            headers=MemoryHeaderTable(header),
            nodes=MemoryTable[OsmNode](),
            ways=MemoryTable[OsmWay](),
            relations=MemoryTable[OsmRelation](),
        )

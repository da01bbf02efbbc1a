from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from enum import Enum

from shapely.geometry.base import BaseGeometry

OsmTags = dict[str, str]


@dataclass(frozen=True)
class OsmInfo:
    version: int | None
    timestamp: datetime | None
    changeset: int | None
    uid: int | None
    user: str | None

    @classmethod
    def default(cls) -> OsmInfo:
        return cls(None, None, None, None, None)


@dataclass(frozen=True)
class OsmNode:
    id: int
    info: OsmInfo
    tags: OsmTags | None
    latitude: float | None
    longitude: float | None
    geometry: BaseGeometry | None = field(default=None, compare=False)

    @property
    def coordinate(self) -> tuple[float, float] | None:
        if self.longitude is None or self.latitude is None:
            return None
        return (self.longitude, self.latitude)


@dataclass(frozen=True)
class OsmWay:
    id: int
    info: OsmInfo
    tags: OsmTags | None
    nodes: list[int]
    geometry: BaseGeometry | None = field(default=None, compare=False)


@dataclass(frozen=True)
class OsmRelationMember:
    id: int
    role: str
    type: str


@dataclass(frozen=True)
class OsmRelation:
    id: int
    info: OsmInfo
    tags: OsmTags | None
    members: list[OsmRelationMember]
    geometry: BaseGeometry | None = field(default=None, compare=False)


OsmEntity = OsmNode | OsmWay | OsmRelation


def entity_type(entity: OsmEntity) -> str:
    match entity:
        case OsmNode():
            return "node"
        case OsmWay():
            return "way"
        case OsmRelation():
            return "relation"
        case _:
            raise TypeError(f"Not an OSM entity: {entity!r}")


@dataclass(frozen=True)
class ReplicationState:
    sequence_number: int
    timestamp: datetime


@dataclass(frozen=True)
class Header:
    sequence_number: int | None
    timestamp: datetime | None
    replication_url: str | None
    source: str | None
    writing_program: str | None

    def advance(self, state: ReplicationState) -> Header:
        """Returns the header for a store that has caught up to ``state``."""
        return Header(
            sequence_number=state.sequence_number,
            timestamp=state.timestamp,
            replication_url=self.replication_url,
            source=self.source,
            writing_program=self.writing_program,
        )


@dataclass(frozen=True)
class HeaderBlock:
    header: Header


@dataclass(frozen=True)
class DataBlock:
    nodes: list[OsmNode] = field(default_factory=list)
    dense_nodes: list[OsmNode] = field(default_factory=list)
    ways: list[OsmWay] = field(default_factory=list)
    relations: list[OsmRelation] = field(default_factory=list)

    def all_nodes(self) -> list[OsmNode]:
        return self.nodes + self.dense_nodes


Block = HeaderBlock | DataBlock


class ChangeType(Enum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


@dataclass(frozen=True)
class Change:
    type: ChangeType
    entities: list[OsmEntity]

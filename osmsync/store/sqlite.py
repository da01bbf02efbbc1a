"""SQLite store built on peewee.

Every entity table is keyed by the OSM id, so upserts are ``INSERT OR REPLACE``
and replaying the same diff leaves the tables unchanged. The header is a single
row that is overwritten on each write.
"""

from __future__ import annotations

import json
import os
from collections.abc import Callable
from collections.abc import Sequence
from datetime import datetime
from typing import Any
from typing import Generic
from typing import TypeVar

import shapely.wkb
from peewee import BigIntegerField
from peewee import BlobField
from peewee import FloatField
from peewee import IntegerField
from peewee import Model
from peewee import PeeweeException
from peewee import SqliteDatabase
from peewee import TextField
from peewee import chunked

from osmsync.errors import StoreError
from osmsync.osm.types import Header
from osmsync.osm.types import OsmEntity
from osmsync.osm.types import OsmInfo
from osmsync.osm.types import OsmNode
from osmsync.osm.types import OsmRelation
from osmsync.osm.types import OsmRelationMember
from osmsync.osm.types import OsmWay
from osmsync.store.base import Store

E = TypeVar("E", OsmNode, OsmWay, OsmRelation)

# Keeps every INSERT below SQLite's default limit of 999 bound variables.
ROWS_PER_INSERT = 50
IDS_PER_DELETE = 500


class TimestampField(TextField):
    def db_value(self, value: datetime | None) -> str | None:
        return None if value is None else value.isoformat()

    def python_value(self, value: str | None) -> datetime | None:
        return None if value is None else datetime.fromisoformat(value)


class JSONField(TextField):
    def db_value(self, value: Any) -> str | None:
        return None if value is None else json.dumps(value)

    def python_value(self, value: str | None) -> Any:
        return None if value is None else json.loads(value)


class GeometryField(BlobField):
    def db_value(self, value: Any) -> Any:
        return None if value is None else super().db_value(shapely.wkb.dumps(value))

    def python_value(self, value: Any) -> Any:
        return None if value is None else shapely.wkb.loads(bytes(value))


class HeaderRow(Model):
    id = IntegerField(primary_key=True)
    sequence_number = BigIntegerField(null=True)
    timestamp = TimestampField(null=True)
    replication_url = TextField(null=True)
    source = TextField(null=True)
    writing_program = TextField(null=True)

    class Meta:
        table_name = "osm_headers"


class EntityRow(Model):
    id = BigIntegerField(primary_key=True)
    version = IntegerField(null=True)
    timestamp = TimestampField(null=True)
    changeset = BigIntegerField(null=True)
    uid = BigIntegerField(null=True)
    user = TextField(null=True)
    tags = JSONField(null=True)
    geom = GeometryField(null=True)


class NodeRow(EntityRow):
    latitude = FloatField(null=True)
    longitude = FloatField(null=True)

    class Meta:
        table_name = "osm_nodes"


class WayRow(EntityRow):
    nodes = JSONField()

    class Meta:
        table_name = "osm_ways"


class RelationRow(EntityRow):
    members = JSONField()

    class Meta:
        table_name = "osm_relations"


MODELS = [HeaderRow, NodeRow, WayRow, RelationRow]


def entity_columns(entity: OsmEntity) -> dict[str, Any]:
    return {
        "id": entity.id,
        "version": entity.info.version,
        "timestamp": entity.info.timestamp,
        "changeset": entity.info.changeset,
        "uid": entity.info.uid,
        "user": entity.info.user,
        "tags": entity.tags,
        "geom": entity.geometry,
    }


def entity_info(row: EntityRow) -> OsmInfo:
    return OsmInfo(version=row.version, timestamp=row.timestamp, changeset=row.changeset, uid=row.uid, user=row.user)


def node_to_row(node: OsmNode) -> dict[str, Any]:
    return entity_columns(node) | {"latitude": node.latitude, "longitude": node.longitude}


def row_to_node(row: NodeRow) -> OsmNode:
    return OsmNode(
        id=row.id,
        info=entity_info(row),
        tags=row.tags,
        latitude=row.latitude,
        longitude=row.longitude,
        geometry=row.geom,
    )


def way_to_row(way: OsmWay) -> dict[str, Any]:
    return entity_columns(way) | {"nodes": way.nodes}


def row_to_way(row: WayRow) -> OsmWay:
    return OsmWay(id=row.id, info=entity_info(row), tags=row.tags, nodes=row.nodes, geometry=row.geom)


def relation_to_row(relation: OsmRelation) -> dict[str, Any]:
    members = [[m.id, m.role, m.type] for m in relation.members]
    return entity_columns(relation) | {"members": members}


def row_to_relation(row: RelationRow) -> OsmRelation:
    return OsmRelation(
        id=row.id,
        info=entity_info(row),
        tags=row.tags,
        members=[OsmRelationMember(id=id, role=role, type=type) for id, role, type in row.members],
        geometry=row.geom,
    )


class SqliteTable(Generic[E]):
    def __init__(
        self,
        database: SqliteDatabase,
        model: type[EntityRow],
        to_row: Callable[[E], dict[str, Any]],
        from_row: Callable[[Any], E],
    ) -> None:
        self.database = database
        self.model = model
        self.to_row = to_row
        self.from_row = from_row

    def upsert_batch(self, entities: Sequence[E]) -> None:
        rows = [self.to_row(entity) for entity in entities]
        try:
            with self.database.bind_ctx([self.model]), self.database.atomic():
                for chunk in chunked(rows, ROWS_PER_INSERT):
                    self.model.insert_many(chunk).on_conflict_replace().execute()
        except PeeweeException as e:
            raise StoreError(f"Failed to upsert {len(rows)} rows into {self.model._meta.table_name}") from e

    def delete_batch(self, ids: Sequence[int]) -> None:
        try:
            with self.database.bind_ctx([self.model]), self.database.atomic():
                for chunk in chunked(ids, IDS_PER_DELETE):
                    self.model.delete().where(self.model.id.in_(chunk)).execute()
        except PeeweeException as e:
            raise StoreError(f"Failed to delete {len(ids)} rows from {self.model._meta.table_name}") from e

    def get(self, id: int) -> E | None:
        with self.database.bind_ctx([self.model]):
            row = self.model.get_or_none(self.model.id == id)
        return None if row is None else self.from_row(row)

    def count(self) -> int:
        with self.database.bind_ctx([self.model]):
            return self.model.select().count()


class SqliteHeaderTable:
    HEADER_ID = 1

    def __init__(self, database: SqliteDatabase) -> None:
        self.database = database

    def read(self) -> Header | None:
        try:
            with self.database.bind_ctx([HeaderRow]):
                row = HeaderRow.get_or_none(HeaderRow.id == self.HEADER_ID)
        except PeeweeException as e:
            raise StoreError("Failed to read header") from e
        if row is None:
            return None
        return Header(
            sequence_number=row.sequence_number,
            timestamp=row.timestamp,
            replication_url=row.replication_url,
            source=row.source,
            writing_program=row.writing_program,
        )

    def write(self, header: Header) -> None:
        try:
            with self.database.bind_ctx([HeaderRow]), self.database.atomic():
                HeaderRow.replace(
                    id=self.HEADER_ID,
                    sequence_number=header.sequence_number,
                    timestamp=header.timestamp,
                    replication_url=header.replication_url,
                    source=header.source,
                    writing_program=header.writing_program,
                ).execute()
        except PeeweeException as e:
            raise StoreError("Failed to write header") from e


class SqliteStore(Store):
    def __init__(self, filename: str | os.PathLike) -> None:
        self.database = SqliteDatabase(str(filename), pragmas={"journal_mode": "wal"})
        try:
            self.database.connect()
            with self.database.bind_ctx(MODELS):
                self.database.create_tables(MODELS, safe=True)
        except PeeweeException as e:
            raise StoreError(f"Failed to open {filename}") from e

        super().__init__(
            headers=SqliteHeaderTable(self.database),
            nodes=SqliteTable(self.database, NodeRow, node_to_row, row_to_node),
            ways=SqliteTable(self.database, WayRow, way_to_row, row_to_way),
            relations=SqliteTable(self.database, RelationRow, relation_to_row, row_to_relation),
        )

    def close(self) -> None:
        if not self.database.is_closed():
            self.database.close()

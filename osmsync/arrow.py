from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import pyarrow as pa
import pyarrow.fs
import pyarrow.parquet as pq
import shapely.wkb

from osmsync.helper import join_path
from osmsync.osm.types import OsmEntity
from osmsync.osm.types import OsmNode
from osmsync.osm.types import OsmRelation
from osmsync.osm.types import OsmWay

ARROW_TIMESTAMP = pa.timestamp("ms", tz="UTC")

ARROW_ENTITY_FIELDS = [
    pa.field("id", pa.int64()),
    pa.field("deleted", pa.bool_()),
    pa.field("version", pa.int32()),
    pa.field("tags", pa.map_(pa.string(), pa.string())),
    pa.field("timestamp", ARROW_TIMESTAMP),
    pa.field("changeset", pa.int64()),
    pa.field("uid", pa.int64()),
    pa.field("user", pa.string()),
    pa.field("geometry", pa.binary()),
]

ARROW_NODE_SCHEMA = pa.schema(
    ARROW_ENTITY_FIELDS
    + [
        pa.field("latitude", pa.float64()),
        pa.field("longitude", pa.float64()),
    ]
)

ARROW_WAY_SCHEMA = pa.schema(
    ARROW_ENTITY_FIELDS
    + [
        pa.field("nodes", pa.list_(pa.int64())),
    ]
)

ARROW_MEMBER_TYPE = pa.struct(
    [
        pa.field("id", pa.int64()),
        pa.field("role", pa.string()),
        pa.field("type", pa.string()),
    ]
)

ARROW_RELATION_SCHEMA = pa.schema(
    ARROW_ENTITY_FIELDS
    + [
        pa.field("members", pa.list_(ARROW_MEMBER_TYPE)),
    ]
)


def _entity_columns(entities: Sequence[OsmEntity]) -> dict[str, list[Any]]:
    return {
        "id": [entity.id for entity in entities],
        "deleted": [False] * len(entities),
        "version": [entity.info.version for entity in entities],
        "tags": [list(entity.tags.items()) if entity.tags is not None else None for entity in entities],
        "timestamp": [entity.info.timestamp for entity in entities],
        "changeset": [entity.info.changeset for entity in entities],
        "uid": [entity.info.uid for entity in entities],
        "user": [entity.info.user for entity in entities],
        "geometry": [
            shapely.wkb.dumps(entity.geometry) if entity.geometry is not None else None for entity in entities
        ],
    }


def record_batch_for_nodes(nodes: Sequence[OsmNode]) -> pa.RecordBatch | None:
    if not nodes:
        return None

    data = _entity_columns(nodes)
    data["latitude"] = [node.latitude for node in nodes]
    data["longitude"] = [node.longitude for node in nodes]
    return pa.RecordBatch.from_pydict(data, schema=ARROW_NODE_SCHEMA)


def record_batch_for_ways(ways: Sequence[OsmWay]) -> pa.RecordBatch | None:
    if not ways:
        return None

    data = _entity_columns(ways)
    data["nodes"] = [way.nodes for way in ways]
    return pa.RecordBatch.from_pydict(data, schema=ARROW_WAY_SCHEMA)


def record_batch_for_relations(relations: Sequence[OsmRelation]) -> pa.RecordBatch | None:
    if not relations:
        return None

    data = _entity_columns(relations)
    data["members"] = [
        [{"id": m.id, "role": m.role, "type": m.type} for m in relation.members] for relation in relations
    ]
    return pa.RecordBatch.from_pydict(data, schema=ARROW_RELATION_SCHEMA)


def record_batch_for_deletes(ids: Sequence[int], schema: pa.Schema) -> pa.RecordBatch | None:
    """Tombstone rows: only ``id`` and ``deleted`` are set."""
    if not ids:
        return None

    data: dict[str, list[Any]] = {field.name: [None] * len(ids) for field in schema}
    data["id"] = list(ids)
    data["deleted"] = [True] * len(ids)
    return pa.RecordBatch.from_pydict(data, schema=schema)


@dataclass
class WriterConfig:
    max_rows_per_file: int | None = None
    max_file_size: int | None = None


@dataclass
class Writer:
    filename: str
    writer: pq.ParquetWriter
    written_rows: int = 0
    written_batches: int = 0

    def write(self, batch: pa.RecordBatch) -> None:
        self.writer.write_batch(batch)
        self.written_rows += batch.num_rows
        self.written_batches += 1

    def close(self) -> None:
        self.writer.close()


class ParquetBatchWriter:
    def __init__(
        self,
        fs: pa.fs.FileSystem,
        base_path: str,
        filename_template: str,
        schema: pa.Schema,
        config: WriterConfig,
    ) -> None:
        self.fs = fs
        self.base_path = base_path
        self.filename_template = filename_template
        self.schema = schema
        self.writer_config = config
        self.unique_id = str(uuid.uuid4()).replace("-", "_")
        self._file_index = 0

        self.fs.create_dir(base_path, recursive=True)
        self._writer: Writer | None = None

    def _get_writer(self) -> Writer:
        if self._writer is None:
            self._file_index += 1
            filename = join_path(
                self.base_path, self.filename_template.format(file_id=self.unique_id, index=self._file_index)
            )
            writer = pq.ParquetWriter(
                filename,
                schema=self.schema,
                filesystem=self.fs,
            )
            self._writer = Writer(
                filename=filename,
                writer=writer,
            )

        return self._writer

    def write(self, batch: pa.RecordBatch | None) -> None:
        if batch is None:
            return
        writer = self._get_writer()
        writer.write(batch)
        if self._should_switch_writer():
            self.close()

    def _should_switch_writer(self) -> bool:
        if self._writer is None:
            return False

        if self.writer_config.max_rows_per_file:
            if self._writer.written_rows >= self.writer_config.max_rows_per_file:
                return True

        if self.writer_config.max_file_size is not None:
            if self._writer.written_batches % 10 == 0:
                if self.fs.get_file_info(self._writer.filename).size >= self.writer_config.max_file_size:
                    return True

        return False

    def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
            self._writer = None

    def __enter__(self) -> ParquetBatchWriter:
        return self

    def __exit__(self, exc_type: Any, exc_value: Any, traceback: Any) -> None:
        self.close()

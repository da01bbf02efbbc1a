"""Append-only Parquet store.

Each entity type is written to its own dataset directory. Parquet files
cannot be updated in place, so an upsert appends the new row and a delete
appends a tombstone row with ``deleted`` set. Readers keep the last row per
id. The header is a small JSON document that is rewritten on every write.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from collections.abc import Sequence
from datetime import datetime
from typing import Any
from typing import Generic
from typing import TypeVar

import pyarrow as pa
import pyarrow.fs

from osmsync.arrow import ARROW_NODE_SCHEMA
from osmsync.arrow import ARROW_RELATION_SCHEMA
from osmsync.arrow import ARROW_WAY_SCHEMA
from osmsync.arrow import ParquetBatchWriter
from osmsync.arrow import WriterConfig
from osmsync.arrow import record_batch_for_deletes
from osmsync.arrow import record_batch_for_nodes
from osmsync.arrow import record_batch_for_relations
from osmsync.arrow import record_batch_for_ways
from osmsync.errors import StoreError
from osmsync.helper import join_path
from osmsync.osm.types import Header
from osmsync.osm.types import OsmNode
from osmsync.osm.types import OsmRelation
from osmsync.osm.types import OsmWay
from osmsync.store.base import Store

E = TypeVar("E", OsmNode, OsmWay, OsmRelation)

HEADER_FILENAME = "header.json"


class ParquetTable(Generic[E]):
    """One finished Parquet file per call.

    A file is only readable once its footer is written, so every batch closes
    the file it went into. Rows are durable before the call returns, and so
    before any later header write.
    """

    def __init__(
        self,
        writer: ParquetBatchWriter,
        to_batch: Callable[[Sequence[E]], pa.RecordBatch | None],
    ) -> None:
        self.writer = writer
        self.to_batch = to_batch

    def _write(self, batch: pa.RecordBatch | None) -> None:
        try:
            self.writer.write(batch)
        finally:
            self.writer.close()

    def upsert_batch(self, entities: Sequence[E]) -> None:
        try:
            self._write(self.to_batch(entities))
        except (pa.ArrowException, OSError) as e:
            raise StoreError(f"Failed to write {len(entities)} rows to {self.writer.base_path}") from e

    def delete_batch(self, ids: Sequence[int]) -> None:
        try:
            self._write(record_batch_for_deletes(ids, self.writer.schema))
        except (pa.ArrowException, OSError) as e:
            raise StoreError(f"Failed to write {len(ids)} tombstones to {self.writer.base_path}") from e

    def close(self) -> None:
        self.writer.close()


class ParquetHeaderTable:
    def __init__(self, fs: pa.fs.FileSystem, base_path: str) -> None:
        self.fs = fs
        self.path = join_path(base_path, HEADER_FILENAME)

    def read(self) -> Header | None:
        if self.fs.get_file_info(self.path).type == pa.fs.FileType.NotFound:
            return None
        try:
            with self.fs.open_input_stream(self.path) as stream:
                message = json.loads(stream.read().decode())
        except (OSError, ValueError) as e:
            raise StoreError(f"Failed to read {self.path}") from e

        timestamp = message.get("timestamp")
        return Header(
            sequence_number=message.get("sequence_number"),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else None,
            replication_url=message.get("replication_url"),
            source=message.get("source"),
            writing_program=message.get("writing_program"),
        )

    def write(self, header: Header) -> None:
        message: dict[str, Any] = {
            "sequence_number": header.sequence_number,
            "timestamp": header.timestamp.isoformat() if header.timestamp else None,
            "replication_url": header.replication_url,
            "source": header.source,
            "writing_program": header.writing_program,
        }
        try:
            with self.fs.open_output_stream(self.path, compression=None) as stream:
                stream.write(json.dumps(message).encode())
        except OSError as e:
            raise StoreError(f"Failed to write {self.path}") from e


class ParquetStore(Store):
    def __init__(self, root_path: str, config: WriterConfig | None = None) -> None:
        config = config or WriterConfig(max_file_size=128 * 1024 * 1024)
        fs, base_path = pa.fs.FileSystem.from_uri(root_path)
        fs.create_dir(base_path, recursive=True)

        self.fs = fs
        self.base_path = base_path

        def table(name: str, schema: pa.Schema, to_batch: Callable) -> ParquetTable:
            writer = ParquetBatchWriter(
                fs=fs,
                base_path=join_path(base_path, f"{name}/"),
                filename_template=name + "_{file_id}_{index:05d}.parquet",
                schema=schema,
                config=config,
            )
            return ParquetTable(writer, to_batch)

        super().__init__(
            headers=ParquetHeaderTable(fs, base_path),
            nodes=table("nodes", ARROW_NODE_SCHEMA, record_batch_for_nodes),
            ways=table("ways", ARROW_WAY_SCHEMA, record_batch_for_ways),
            relations=table("relations", ARROW_RELATION_SCHEMA, record_batch_for_relations),
        )

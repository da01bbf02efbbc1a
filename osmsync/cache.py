from __future__ import annotations

import logging
import mmap
import os
import struct
from collections.abc import Iterable
from pathlib import Path
from typing import Any
from typing import Generic
from typing import Protocol
from typing import TypeVar

from peewee import BigIntegerField
from peewee import Model
from peewee import SqliteDatabase
from peewee import TextField
from peewee import chunked

K = TypeVar("K")
V = TypeVar("V")

Coordinate = tuple[float, float]

logger = logging.getLogger(__name__)


class Cache(Protocol[K, V]):
    def get(self, key: K) -> V | None: ...

    def put(self, key: K, value: V) -> None: ...

    def get_all(self, keys: Iterable[K]) -> list[V | None]: ...

    def put_all(self, entries: Iterable[tuple[K, V]]) -> None: ...

    def close(self) -> None: ...


class InMemoryCache(Generic[K, V]):
    def __init__(self) -> None:
        self._data: dict[K, V] = {}

    def get(self, key: K) -> V | None:
        return self._data.get(key)

    def put(self, key: K, value: V) -> None:
        self._data[key] = value

    def get_all(self, keys: Iterable[K]) -> list[V | None]:
        return [self._data.get(key) for key in keys]

    def put_all(self, entries: Iterable[tuple[K, V]]) -> None:
        self._data.update(entries)

    def close(self) -> None:
        pass

    def __len__(self) -> int:
        return len(self._data)


class CoordinateFileCache:
    """Node coordinates in a sparse memory-mapped file, indexed by node id.

    Each id owns eight bytes at ``id * 8``: longitude and latitude as int32
    scaled by 1e7. Zero marks an absent value, so a real zero is stored as
    ``ZERO_VALUE``, which lies outside the valid coordinate range.
    """

    COORD_MULTIPLIER = 1e7
    ZERO_VALUE = 0x7FFFFFFE
    RECORD = struct.Struct("<ii")
    GROW_SIZE = 64 * 1024 * 1024

    def __init__(self, filename: str | os.PathLike) -> None:
        self.filename = Path(filename)
        self.f = open(self.filename, "r+b" if self.filename.exists() else "w+b")
        self.f.seek(0, os.SEEK_END)
        self.length = self.f.tell()
        self.map: mmap.mmap | None = None
        if self.length:
            self.map = mmap.mmap(self.f.fileno(), self.length)

    def _encode(self, value: float) -> int:
        v = int(round(value * self.COORD_MULTIPLIER))
        return self.ZERO_VALUE if v == 0 else v

    def _decode(self, value: int) -> float:
        return 0.0 if value == self.ZERO_VALUE else value / self.COORD_MULTIPLIER

    def _offset(self, key: int) -> int:
        if key < 0:
            raise ValueError(f"Negative node id {key} cannot be stored in a file cache")
        return key * self.RECORD.size

    def _grow(self, size: int) -> None:
        new_length = (size // self.GROW_SIZE + 1) * self.GROW_SIZE
        if self.map is not None:
            self.map.close()
        self.f.truncate(new_length)
        self.length = new_length
        self.map = mmap.mmap(self.f.fileno(), self.length)

    def get(self, key: int) -> Coordinate | None:
        offset = self._offset(key)
        if self.map is None or offset + self.RECORD.size > self.length:
            return None
        lon, lat = self.RECORD.unpack_from(self.map, offset)
        if lon == 0 or lat == 0:
            return None
        return (self._decode(lon), self._decode(lat))

    def put(self, key: int, value: Coordinate) -> None:
        offset = self._offset(key)
        if offset + self.RECORD.size > self.length:
            self._grow(offset + self.RECORD.size)
        lon, lat = value
        self.RECORD.pack_into(self.map, offset, self._encode(lon), self._encode(lat))

    def get_all(self, keys: Iterable[int]) -> list[Coordinate | None]:
        return [self.get(key) for key in keys]

    def put_all(self, entries: Iterable[tuple[int, Coordinate]]) -> None:
        for key, value in entries:
            self.put(key, value)

    def flush(self) -> None:
        if self.map is not None:
            self.map.flush()

    def close(self) -> None:
        if self.map is not None:
            self.map.flush()
            self.map.close()
            self.map = None
        self.f.close()


class ReferenceRow(Model):
    id = BigIntegerField(primary_key=True)
    refs = TextField()

    class Meta:
        table_name = "way_refs"


class ReferenceDatabaseCache:
    """Way node lists in a SQLite table, one comma separated row per way."""

    def __init__(self, filename: str | os.PathLike) -> None:
        self.database = SqliteDatabase(
            str(filename),
            pragmas={"journal_mode": "wal", "synchronous": "off", "cache_size": -64 * 1024},
        )
        self.database.connect()
        with self.database.bind_ctx([ReferenceRow]):
            self.database.create_tables([ReferenceRow], safe=True)

    @staticmethod
    def _join(refs: list[int]) -> str:
        return ",".join(str(ref) for ref in refs)

    @staticmethod
    def _split(value: str) -> list[int]:
        return [int(ref) for ref in value.split(",")] if value else []

    def get(self, key: int) -> list[int] | None:
        return self.get_all([key])[0]

    def put(self, key: int, value: list[int]) -> None:
        self.put_all([(key, value)])

    def get_all(self, keys: Iterable[int]) -> list[list[int] | None]:
        keys = list(keys)
        found: dict[int, list[int]] = {}
        with self.database.bind_ctx([ReferenceRow]):
            for chunk in chunked(set(keys), 500):
                query = ReferenceRow.select().where(ReferenceRow.id.in_(chunk))
                found.update((row.id, self._split(row.refs)) for row in query)
        return [found.get(key) for key in keys]

    def put_all(self, entries: Iterable[tuple[int, list[int]]]) -> None:
        rows = [{"id": key, "refs": self._join(value)} for key, value in entries]
        with self.database.bind_ctx([ReferenceRow]), self.database.atomic():
            for chunk in chunked(rows, 400):
                ReferenceRow.insert_many(chunk).on_conflict_replace().execute()

    def close(self) -> None:
        if not self.database.is_closed():
            self.database.close()


class ReferenceCache:
    """The two id spaces needed to rebuild geometry in one pass.

    Node ids map to coordinates and way ids map to their node lists. The spaces
    are kept apart because a node and a way may share the same id.
    """

    def __init__(self, coordinates: Cache[int, Coordinate], references: Cache[int, list[int]]) -> None:
        self.coordinates = coordinates
        self.references = references

    @classmethod
    def in_memory(cls) -> ReferenceCache:
        return cls(InMemoryCache(), InMemoryCache())

    @classmethod
    def on_disk(cls, directory: str | os.PathLike) -> ReferenceCache:
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        logger.info("Using on-disk reference cache in %s", directory)
        return cls(
            CoordinateFileCache(directory / "coordinates.bin"),
            ReferenceDatabaseCache(directory / "references.db"),
        )

    def put_coordinate(self, node_id: int, coordinate: Coordinate) -> None:
        self.coordinates.put(node_id, coordinate)

    def put_coordinates(self, entries: Iterable[tuple[int, Coordinate]]) -> None:
        self.coordinates.put_all(entries)

    def get_coordinate(self, node_id: int) -> Coordinate | None:
        return self.coordinates.get(node_id)

    def get_coordinates(self, node_ids: Iterable[int]) -> list[Coordinate | None]:
        return self.coordinates.get_all(node_ids)

    def put_references(self, way_id: int, node_ids: list[int]) -> None:
        self.references.put(way_id, node_ids)

    def put_all_references(self, entries: Iterable[tuple[int, list[int]]]) -> None:
        self.references.put_all(entries)

    def get_references(self, way_id: int) -> list[int] | None:
        return self.references.get(way_id)

    def get_all_references(self, way_ids: Iterable[int]) -> list[list[int] | None]:
        return self.references.get_all(way_ids)

    def close(self) -> None:
        self.coordinates.close()
        self.references.close()

    def __enter__(self) -> ReferenceCache:
        return self

    def __exit__(self, exc_type: Any, exc_value: Any, traceback: Any) -> None:
        self.close()

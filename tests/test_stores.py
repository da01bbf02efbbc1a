import json
from datetime import datetime
from datetime import timezone

import pyarrow.parquet as pq
import pytest
from shapely.geometry import LineString
from shapely.geometry import Point

from osmsync.errors import StoreError
from osmsync.osm.types import Header
from osmsync.osm.types import OsmInfo
from osmsync.osm.types import OsmNode
from osmsync.osm.types import OsmRelation
from osmsync.osm.types import OsmRelationMember
from osmsync.osm.types import OsmWay
from osmsync.store.memory import MemoryStore
from osmsync.store.parquet import ParquetStore
from osmsync.store.sqlite import SqliteStore

INFO = OsmInfo(version=2, timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc), changeset=5, uid=9, user="bob")

HEADER = Header(
    sequence_number=100,
    timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
    replication_url="https://example.org/replication/minute",
    source="planet",
    writing_program="osmium",
)


def make_node(id, tags=None):
    return OsmNode(id=id, info=INFO, tags=tags, latitude=50.0, longitude=10.0, geometry=Point(10.0, 50.0))


def make_way(id):
    return OsmWay(id=id, info=INFO, tags={"highway": "path"}, nodes=[1, 2], geometry=LineString([(0, 0), (1, 1)]))


def make_relation(id):
    return OsmRelation(id=id, info=INFO, tags={"type": "route"}, members=[OsmRelationMember(1, "stop", "node")])


class TestMemoryStore:
    def test_upsert_is_idempotent(self):
        store = MemoryStore()
        store.nodes.upsert_batch([make_node(1), make_node(2)])
        store.nodes.upsert_batch([make_node(1), make_node(2)])
        assert len(store.nodes) == 2

    def test_upsert_replaces(self):
        store = MemoryStore()
        store.nodes.upsert_batch([make_node(1)])
        store.nodes.upsert_batch([make_node(1, {"name": "new"})])
        assert store.nodes.get(1).tags == {"name": "new"}

    def test_delete_is_idempotent(self):
        store = MemoryStore()
        store.ways.upsert_batch([make_way(1)])
        store.ways.delete_batch([1, 2])
        store.ways.delete_batch([1, 2])
        assert store.ways.get(1) is None

    def test_header(self):
        store = MemoryStore()
        assert store.headers.read() is None
        store.headers.write(HEADER)
        assert store.headers.read() == HEADER


class TestSqliteStore:
    @pytest.fixture
    def store(self, tmp_path):
        with SqliteStore(tmp_path / "osm.sqlite") as store:
            yield store

    def test_round_trip(self, store):
        store.nodes.upsert_batch([make_node(1, {"name": "a"})])
        store.ways.upsert_batch([make_way(2)])
        store.relations.upsert_batch([make_relation(3)])

        node = store.nodes.get(1)
        assert node == make_node(1, {"name": "a"})
        assert node.geometry.equals(Point(10.0, 50.0))
        assert node.info.timestamp == INFO.timestamp

        way = store.ways.get(2)
        assert way.nodes == [1, 2]
        assert way.geometry.equals(LineString([(0, 0), (1, 1)]))

        relation = store.relations.get(3)
        assert relation.members == [OsmRelationMember(1, "stop", "node")]
        assert relation.geometry is None

    def test_create_twice(self, store):
        batch = [make_node(i) for i in range(120)]
        store.nodes.upsert_batch(batch)
        store.nodes.upsert_batch(batch)
        assert store.nodes.count() == 120

    def test_modify_replaces_row(self, store):
        store.nodes.upsert_batch([make_node(1)])
        store.nodes.upsert_batch([make_node(1, {"name": "new"})])
        assert store.nodes.get(1).tags == {"name": "new"}
        assert store.nodes.count() == 1

    def test_delete_twice(self, store):
        store.ways.upsert_batch([make_way(1), make_way(2)])
        store.ways.delete_batch([1, 3])
        store.ways.delete_batch([1, 3])
        assert store.ways.get(1) is None
        assert store.ways.count() == 1

    def test_header_is_single_row(self, store):
        assert store.headers.read() is None
        store.headers.write(HEADER)
        advanced = Header(101, datetime(2024, 1, 2, tzinfo=timezone.utc), HEADER.replication_url, "planet", "osmium")
        store.headers.write(advanced)
        assert store.headers.read() == advanced

    def test_header_survives_reopen(self, tmp_path):
        with SqliteStore(tmp_path / "osm.sqlite") as store:
            store.headers.write(HEADER)
        with SqliteStore(tmp_path / "osm.sqlite") as store:
            assert store.headers.read() == HEADER

    def test_unopenable_database(self, tmp_path):
        with pytest.raises(StoreError):
            SqliteStore(tmp_path / "missing" / "osm.sqlite")


class TestParquetStore:
    def test_rows_and_tombstones(self, tmp_path):
        with ParquetStore(str(tmp_path / "out")) as store:
            store.nodes.upsert_batch([make_node(1), make_node(2)])
            store.nodes.upsert_batch([make_node(1)])
            store.nodes.delete_batch([2])
            store.nodes.delete_batch([2])

        table = pq.read_table(str(tmp_path / "out" / "nodes")).to_pylist()
        assert [(row["id"], row["deleted"]) for row in table] == [
            (1, False),
            (2, False),
            (1, False),
            (2, True),
            (2, True),
        ]
        assert table[0]["tags"] is None
        assert table[0]["user"] == "bob"
        assert table[-1]["geometry"] is None

    def test_rows_are_readable_before_close(self, tmp_path):
        store = ParquetStore(str(tmp_path / "out"))
        store.nodes.upsert_batch([make_node(1)])
        store.nodes.delete_batch([1])
        store.headers.write(HEADER)

        rows = pq.read_table(str(tmp_path / "out" / "nodes")).to_pylist()
        assert [(row["id"], row["deleted"]) for row in rows] == [(1, False), (1, True)]
        store.close()

    def test_empty_batches_write_no_files(self, tmp_path):
        with ParquetStore(str(tmp_path / "out")) as store:
            store.ways.upsert_batch([])
            store.ways.delete_batch([])
        assert list((tmp_path / "out" / "ways").iterdir()) == []

    def test_ways_and_relations(self, tmp_path):
        with ParquetStore(str(tmp_path / "out")) as store:
            store.ways.upsert_batch([make_way(5)])
            store.relations.upsert_batch([make_relation(6)])

        [way] = pq.read_table(str(tmp_path / "out" / "ways")).to_pylist()
        assert way["nodes"] == [1, 2]
        assert dict(way["tags"]) == {"highway": "path"}
        [relation] = pq.read_table(str(tmp_path / "out" / "relations")).to_pylist()
        assert relation["members"] == [{"id": 1, "role": "stop", "type": "node"}]

    def test_header_json(self, tmp_path):
        store = ParquetStore(str(tmp_path / "out"))
        assert store.headers.read() is None
        store.headers.write(HEADER)
        assert store.headers.read() == HEADER
        store.close()

        message = json.loads((tmp_path / "out" / "header.json").read_text())
        assert message["sequence_number"] == 100
        assert message["replication_url"] == HEADER.replication_url

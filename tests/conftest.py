"""Shared fixtures: small OSM snapshots, diffs and state files on disk."""

import gzip
import lzma
import zlib
from dataclasses import dataclass
from datetime import datetime
from datetime import timezone
from pathlib import Path

import pytest
import zstd

from osmsync.protos.fileformat_pb2 import Blob
from osmsync.protos.fileformat_pb2 import BlobHeader
from osmsync.protos.osmformat_pb2 import HeaderBlock
from osmsync.protos.osmformat_pb2 import PrimitiveBlock

MEMBER_TYPE_NUMBERS = {"node": 0, "way": 1, "relation": 2}

SNAPSHOT_SEQUENCE = 100
SNAPSHOT_TIMESTAMP = datetime(2024, 1, 1, tzinfo=timezone.utc)

# (id, lon, lat, tags)
NODES = [
    (1, 10.0, 50.0, {}),
    (2, 10.1, 50.0, {}),
    (3, 10.1, 50.1, {}),
    (4, 10.0, 50.1, {}),
    (5, 10.2, 50.2, {"amenity": "cafe"}),
]
# (id, refs, tags)
WAYS = [
    (10, [1, 2, 3, 4, 1], {"building": "yes"}),
    (11, [2, 5], {"highway": "residential"}),
]
# (id, [(type, ref, role)], tags)
RELATIONS = [
    (20, [("way", 10, "outer"), ("node", 5, "label"), ("relation", 21, "sub")], {"type": "site"}),
]


def _delta(values):
    previous = 0
    for value in values:
        yield value - previous
        previous = value


def _fixed(degrees):
    # Default granularity of 100 nanodegrees.
    return round(degrees * 10_000_000)


class StringTable:
    def __init__(self):
        self.strings = [""]

    def __call__(self, value):
        if value not in self.strings:
            self.strings.append(value)
        return self.strings.index(value)

    def fill(self, block):
        block.stringtable.s.extend(s.encode("utf-8") for s in self.strings)


class PbfWriter:
    """Builds OSMPBF payloads and frames from plain tuples."""

    def header_block(self, sequence_number=None, timestamp=None, replication_url=None):
        block = HeaderBlock(
            required_features=["OsmSchema-V0.6", "DenseNodes"],
            writingprogram="osmsync-tests",
            source="unit test",
        )
        if sequence_number is not None:
            block.osmosis_replication_sequence_number = sequence_number
        if timestamp is not None:
            block.osmosis_replication_timestamp = int(timestamp.timestamp())
        if replication_url is not None:
            block.osmosis_replication_base_url = replication_url
        return block.SerializeToString()

    def dense_block(self, nodes, timestamp=SNAPSHOT_TIMESTAMP):
        strings = StringTable()
        block = PrimitiveBlock()
        dense = block.primitivegroup.add().dense

        ids = [node[0] for node in nodes]
        dense.id.extend(_delta(ids))
        dense.lon.extend(_delta([_fixed(node[1]) for node in nodes]))
        dense.lat.extend(_delta([_fixed(node[2]) for node in nodes]))

        if any(node[3] for node in nodes):
            for node in nodes:
                for key, value in node[3].items():
                    dense.keys_vals.extend([strings(key), strings(value)])
                dense.keys_vals.append(0)

        seconds = int(timestamp.timestamp())
        dense.denseinfo.version.extend([1] * len(nodes))
        dense.denseinfo.timestamp.extend(_delta([seconds] * len(nodes)))
        dense.denseinfo.changeset.extend(_delta([7] * len(nodes)))
        dense.denseinfo.uid.extend(_delta([42] * len(nodes)))
        dense.denseinfo.user_sid.extend(_delta([strings("alice")] * len(nodes)))

        strings.fill(block)
        return block.SerializeToString()

    def node_block(self, nodes):
        strings = StringTable()
        block = PrimitiveBlock()
        group = block.primitivegroup.add()
        for id, lon, lat, tags in nodes:
            node = group.nodes.add(id=id, lon=_fixed(lon), lat=_fixed(lat))
            node.keys.extend(strings(key) for key in tags)
            node.vals.extend(strings(value) for value in tags.values())
        strings.fill(block)
        return block.SerializeToString()

    def way_block(self, ways):
        strings = StringTable()
        block = PrimitiveBlock()
        group = block.primitivegroup.add()
        for id, refs, tags in ways:
            way = group.ways.add(id=id)
            way.refs.extend(_delta(refs))
            way.keys.extend(strings(key) for key in tags)
            way.vals.extend(strings(value) for value in tags.values())
            way.info.version = 3
        strings.fill(block)
        return block.SerializeToString()

    def relation_block(self, relations):
        strings = StringTable()
        block = PrimitiveBlock()
        group = block.primitivegroup.add()
        for id, members, tags in relations:
            relation = group.relations.add(id=id)
            relation.keys.extend(strings(key) for key in tags)
            relation.vals.extend(strings(value) for value in tags.values())
            relation.memids.extend(_delta([ref for _, ref, _ in members]))
            relation.types.extend(MEMBER_TYPE_NUMBERS[type] for type, _, _ in members)
            relation.roles_sid.extend(strings(role) for _, _, role in members)
        strings.fill(block)
        return block.SerializeToString()

    def frame(self, blob_type, payload, compression="zlib"):
        blob = Blob(raw_size=len(payload))
        match compression:
            case "raw":
                blob.raw = payload
            case "zlib":
                blob.zlib_data = zlib.compress(payload)
            case "zstd":
                blob.zstd_data = zstd.compress(payload)
            case "lzma":
                blob.lzma_data = lzma.compress(payload)
        blob_data = blob.SerializeToString()
        header = BlobHeader(type=blob_type, datasize=len(blob_data)).SerializeToString()
        return len(header).to_bytes(4, "big") + header + blob_data

    def write(self, path, frames):
        Path(path).write_bytes(b"".join(frames))
        return str(path)


@dataclass
class Snapshot:
    path: str
    replication_url: str
    sequence_number: int


@pytest.fixture
def pbf() -> PbfWriter:
    return PbfWriter()


@pytest.fixture
def replication_dir(tmp_path) -> Path:
    directory = tmp_path / "replication"
    directory.mkdir()
    return directory


@pytest.fixture
def snapshot(tmp_path, pbf, replication_dir) -> Snapshot:
    """A snapshot with a header, one block each of nodes, ways and relations."""
    frames = [
        pbf.frame(
            "OSMHeader",
            pbf.header_block(SNAPSHOT_SEQUENCE, SNAPSHOT_TIMESTAMP, str(replication_dir)),
        ),
        pbf.frame("OSMData", pbf.dense_block(NODES)),
        pbf.frame("OSMData", pbf.way_block(WAYS)),
        pbf.frame("OSMData", pbf.relation_block(RELATIONS)),
    ]
    path = pbf.write(tmp_path / "snapshot.osm.pbf", frames)
    return Snapshot(path=path, replication_url=str(replication_dir), sequence_number=SNAPSHOT_SEQUENCE)


def osm_change(*sections: str) -> bytes:
    body = "\n".join(sections)
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<osmChange version="0.6" generator="osmsync-tests">
{body}
</osmChange>
""".encode()


def state_file(sequence_number: int, timestamp: str) -> bytes:
    escaped = timestamp.replace(":", "\\:")
    return f"#Tue Jan 02 00:00:00 UTC 2024\nsequenceNumber={sequence_number}\ntimestamp={escaped}\n".encode()


@pytest.fixture
def publish_diff(replication_dir):
    """Writes ``{seq}.osc.gz`` and ``{seq}.state.txt`` in the replication layout."""

    def publish(sequence_number: int, change: bytes, timestamp: str = "2024-01-02T00:00:00Z") -> None:
        s = f"{sequence_number:09d}"
        directory = replication_dir / s[0:3] / s[3:6]
        directory.mkdir(parents=True, exist_ok=True)
        with gzip.open(directory / f"{s[6:9]}.osc.gz", "wb") as f:
            f.write(change)
        (directory / f"{s[6:9]}.state.txt").write_bytes(state_file(sequence_number, timestamp))

    return publish


@pytest.fixture
def make_change():
    return osm_change


@pytest.fixture
def make_state():
    return state_file

from __future__ import annotations

from collections.abc import Generator
from collections.abc import Iterable
from collections.abc import Sequence
from datetime import datetime
from datetime import timezone

from osmsync.errors import DecodeError
from osmsync.osm.types import DataBlock
from osmsync.osm.types import Header
from osmsync.osm.types import HeaderBlock
from osmsync.osm.types import OsmInfo
from osmsync.osm.types import OsmNode
from osmsync.osm.types import OsmRelation
from osmsync.osm.types import OsmRelationMember
from osmsync.osm.types import OsmTags
from osmsync.osm.types import OsmWay
from osmsync.protos import osmformat_pb2
from osmsync.protos.osmformat_pb2 import MEMBER_TYPES


def delta_decode(values: Iterable[int]) -> Generator[int, None, None]:
    current = 0
    for value in values:
        current += value
        yield current


def epoch_to_datetime(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


class ValueDecoder:
    def __init__(self, block: osmformat_pb2.PrimitiveBlock) -> None:
        self.granularity = block.granularity or 100
        self.lat_offset = block.lat_offset or 0
        self.lon_offset = block.lon_offset or 0
        self.date_granularity = block.date_granularity or 1000

    def lat(self, value: int) -> float:
        return 0.000000001 * (self.lat_offset + (self.granularity * value))

    def lon(self, value: int) -> float:
        return 0.000000001 * (self.lon_offset + (self.granularity * value))

    def timestamp(self, value: int) -> datetime | None:
        if not value:
            return None
        return epoch_to_datetime(value * self.date_granularity / 1000)


class PrimitiveBlockDecoder:
    def __init__(self, block: osmformat_pb2.PrimitiveBlock) -> None:
        self.block = block
        self.string_table = [s.decode("utf-8") for s in block.stringtable.s]
        self.value_decoder = ValueDecoder(block)

    def decode_string(self, index: int) -> str:
        try:
            return self.string_table[index]
        except IndexError:
            raise DecodeError(f"String index {index} outside of string table") from None

    def decode_info(self, info: osmformat_pb2.Info) -> OsmInfo:
        return OsmInfo(
            version=info.version if info.version >= 0 else None,
            timestamp=self.value_decoder.timestamp(info.timestamp),
            changeset=info.changeset or None,
            uid=info.uid or None,
            user=self.decode_string(info.user_sid) if info.user_sid else None,
        )

    def decode_tags(self, keys: Sequence[int], vals: Sequence[int]) -> OsmTags | None:
        if len(keys) != len(vals):
            raise DecodeError("Tag keys and values differ in length")
        if not keys:
            return None
        return {self.decode_string(key): self.decode_string(val) for key, val in zip(keys, vals)}

    def decode_node(self, node: osmformat_pb2.Node) -> OsmNode:
        return OsmNode(
            id=node.id,
            info=self.decode_info(node.info),
            tags=self.decode_tags(node.keys, node.vals),
            latitude=self.value_decoder.lat(node.lat),
            longitude=self.value_decoder.lon(node.lon),
        )

    def decode_dense_info(self, dense: osmformat_pb2.DenseInfo, count: int) -> Generator[OsmInfo, None, None]:
        if not dense.version:
            for _ in range(count):
                yield OsmInfo.default()
            return

        columns = (dense.version, dense.timestamp, dense.changeset, dense.uid, dense.user_sid)
        if any(len(column) != count for column in columns):
            raise DecodeError(f"Dense info arrays do not match {count} dense nodes")

        for version, timestamp, changeset, uid, user_sid in zip(
            dense.version,
            delta_decode(dense.timestamp),
            delta_decode(dense.changeset),
            delta_decode(dense.uid),
            delta_decode(dense.user_sid),
        ):
            yield OsmInfo(
                version=version if version >= 0 else None,
                timestamp=self.value_decoder.timestamp(timestamp),
                changeset=changeset or None,
                uid=uid or None,
                user=self.decode_string(user_sid) if user_sid else None,
            )

    def decode_dense_tags(self, keys_vals: Sequence[int], count: int) -> Generator[OsmTags | None, None, None]:
        # Without any tagged node the keys_vals array may be left empty.
        if not keys_vals:
            for _ in range(count):
                yield None
            return

        i = 0
        tags: OsmTags = {}
        while i < len(keys_vals):
            if keys_vals[i] == 0:
                yield tags or None
                tags = {}
                i += 1
            else:
                if i + 1 >= len(keys_vals):
                    raise DecodeError("Dangling key in dense node tags")
                tags[self.decode_string(keys_vals[i])] = self.decode_string(keys_vals[i + 1])
                i += 2

        if tags:
            raise DecodeError("Unterminated dense node tags")

    def decode_dense_nodes(self, dense: osmformat_pb2.DenseNodes) -> Generator[OsmNode, None, None]:
        count = len(dense.id)
        if len(dense.lat) != count or len(dense.lon) != count:
            raise DecodeError("Dense node ids and coordinates differ in length")

        rows = zip(
            delta_decode(dense.id),
            self.decode_dense_info(dense.denseinfo, count),
            self.decode_dense_tags(dense.keys_vals, count),
            delta_decode(dense.lat),
            delta_decode(dense.lon),
            strict=True,
        )
        try:
            for id, info, tags, lat, lon in rows:
                yield OsmNode(
                    id=id,
                    info=info,
                    tags=tags,
                    latitude=self.value_decoder.lat(lat),
                    longitude=self.value_decoder.lon(lon),
                )
        except ValueError as e:
            # Raised by zip when keys_vals holds more or fewer nodes than ids.
            raise DecodeError(f"Dense node tags do not match {count} dense nodes") from e

    def decode_way(self, way: osmformat_pb2.Way) -> OsmWay:
        return OsmWay(
            id=way.id,
            info=self.decode_info(way.info),
            tags=self.decode_tags(way.keys, way.vals),
            nodes=list(delta_decode(way.refs)),
        )

    def decode_relation(self, relation: osmformat_pb2.Relation) -> OsmRelation:
        if not len(relation.roles_sid) == len(relation.memids) == len(relation.types):
            raise DecodeError(f"Relation {relation.id} has inconsistent member arrays")

        return OsmRelation(
            id=relation.id,
            info=self.decode_info(relation.info),
            tags=self.decode_tags(relation.keys, relation.vals),
            members=[
                OsmRelationMember(
                    id=member_id,
                    role=self.decode_string(role_sid),
                    type=MEMBER_TYPES[member_type],
                )
                for role_sid, member_id, member_type in zip(
                    relation.roles_sid, delta_decode(relation.memids), relation.types
                )
            ],
        )


def decode_data_block(block: osmformat_pb2.PrimitiveBlock) -> DataBlock:
    decoder = PrimitiveBlockDecoder(block)
    data = DataBlock()

    for group in block.primitivegroup:
        data.nodes.extend(decoder.decode_node(node) for node in group.nodes)

        if group.HasField("dense"):
            data.dense_nodes.extend(decoder.decode_dense_nodes(group.dense))

        data.ways.extend(decoder.decode_way(way) for way in group.ways)
        data.relations.extend(decoder.decode_relation(relation) for relation in group.relations)

    return data


def decode_header_block(block: osmformat_pb2.HeaderBlock) -> HeaderBlock:
    return HeaderBlock(
        Header(
            sequence_number=(
                block.osmosis_replication_sequence_number
                if block.HasField("osmosis_replication_sequence_number")
                else None
            ),
            timestamp=(
                epoch_to_datetime(block.osmosis_replication_timestamp)
                if block.HasField("osmosis_replication_timestamp")
                else None
            ),
            replication_url=block.osmosis_replication_base_url or None,
            source=block.source or None,
            writing_program=block.writingprogram or None,
        )
    )

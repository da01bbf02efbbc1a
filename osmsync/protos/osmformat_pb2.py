"""Message classes for OSMPBF ``osmformat.proto``."""

from google.protobuf import descriptor_pb2

from osmsync.protos._builder import BOOL
from osmsync.protos._builder import BYTES
from osmsync.protos._builder import ENUM
from osmsync.protos._builder import INT32
from osmsync.protos._builder import INT64
from osmsync.protos._builder import MESSAGE
from osmsync.protos._builder import PACKAGE
from osmsync.protos._builder import REPEATED
from osmsync.protos._builder import SINT32
from osmsync.protos._builder import SINT64
from osmsync.protos._builder import STRING
from osmsync.protos._builder import UINT32
from osmsync.protos._builder import add_field
from osmsync.protos._builder import add_message
from osmsync.protos._builder import message_class
from osmsync.protos._builder import register


def _file_proto() -> descriptor_pb2.FileDescriptorProto:
    proto = descriptor_pb2.FileDescriptorProto()
    proto.name = "osmsync/osmformat.proto"
    proto.package = PACKAGE
    proto.syntax = "proto2"

    header_bbox = add_message(proto, "HeaderBBox")
    add_field(header_bbox, "left", 1, SINT64)
    add_field(header_bbox, "right", 2, SINT64)
    add_field(header_bbox, "top", 3, SINT64)
    add_field(header_bbox, "bottom", 4, SINT64)

    header = add_message(proto, "HeaderBlock")
    add_field(header, "bbox", 1, MESSAGE, type_name="HeaderBBox")
    add_field(header, "required_features", 4, STRING, REPEATED)
    add_field(header, "optional_features", 5, STRING, REPEATED)
    add_field(header, "writingprogram", 16, STRING)
    add_field(header, "source", 17, STRING)
    add_field(header, "osmosis_replication_timestamp", 32, INT64)
    add_field(header, "osmosis_replication_sequence_number", 33, INT64)
    add_field(header, "osmosis_replication_base_url", 34, STRING)

    string_table = add_message(proto, "StringTable")
    add_field(string_table, "s", 1, BYTES, REPEATED)

    primitive_block = add_message(proto, "PrimitiveBlock")
    add_field(primitive_block, "stringtable", 1, MESSAGE, type_name="StringTable")
    add_field(primitive_block, "primitivegroup", 2, MESSAGE, REPEATED, type_name="PrimitiveGroup")
    add_field(primitive_block, "granularity", 17, INT32, default="100")
    add_field(primitive_block, "date_granularity", 18, INT32, default="1000")
    add_field(primitive_block, "lat_offset", 19, INT64, default="0")
    add_field(primitive_block, "lon_offset", 20, INT64, default="0")

    group = add_message(proto, "PrimitiveGroup")
    add_field(group, "nodes", 1, MESSAGE, REPEATED, type_name="Node")
    add_field(group, "dense", 2, MESSAGE, type_name="DenseNodes")
    add_field(group, "ways", 3, MESSAGE, REPEATED, type_name="Way")
    add_field(group, "relations", 4, MESSAGE, REPEATED, type_name="Relation")
    add_field(group, "changesets", 5, MESSAGE, REPEATED, type_name="ChangeSet")

    info = add_message(proto, "Info")
    add_field(info, "version", 1, INT32, default="-1")
    add_field(info, "timestamp", 2, INT64)
    add_field(info, "changeset", 3, INT64)
    add_field(info, "uid", 4, INT32)
    add_field(info, "user_sid", 5, UINT32)
    add_field(info, "visible", 6, BOOL)

    dense_info = add_message(proto, "DenseInfo")
    add_field(dense_info, "version", 1, INT32, REPEATED, packed=True)
    add_field(dense_info, "timestamp", 2, SINT64, REPEATED, packed=True)
    add_field(dense_info, "changeset", 3, SINT64, REPEATED, packed=True)
    add_field(dense_info, "uid", 4, SINT32, REPEATED, packed=True)
    add_field(dense_info, "user_sid", 5, SINT32, REPEATED, packed=True)
    add_field(dense_info, "visible", 6, BOOL, REPEATED, packed=True)

    changeset = add_message(proto, "ChangeSet")
    add_field(changeset, "id", 1, INT64)

    node = add_message(proto, "Node")
    add_field(node, "id", 1, SINT64)
    add_field(node, "keys", 2, UINT32, REPEATED, packed=True)
    add_field(node, "vals", 3, UINT32, REPEATED, packed=True)
    add_field(node, "info", 4, MESSAGE, type_name="Info")
    add_field(node, "lat", 8, SINT64)
    add_field(node, "lon", 9, SINT64)

    dense = add_message(proto, "DenseNodes")
    add_field(dense, "id", 1, SINT64, REPEATED, packed=True)
    add_field(dense, "denseinfo", 5, MESSAGE, type_name="DenseInfo")
    add_field(dense, "lat", 8, SINT64, REPEATED, packed=True)
    add_field(dense, "lon", 9, SINT64, REPEATED, packed=True)
    add_field(dense, "keys_vals", 10, INT32, REPEATED, packed=True)

    way = add_message(proto, "Way")
    add_field(way, "id", 1, INT64)
    add_field(way, "keys", 2, UINT32, REPEATED, packed=True)
    add_field(way, "vals", 3, UINT32, REPEATED, packed=True)
    add_field(way, "info", 4, MESSAGE, type_name="Info")
    add_field(way, "refs", 8, SINT64, REPEATED, packed=True)
    add_field(way, "lat", 9, SINT64, REPEATED, packed=True)
    add_field(way, "lon", 10, SINT64, REPEATED, packed=True)

    relation = add_message(proto, "Relation")
    member_type = relation.enum_type.add()
    member_type.name = "MemberType"
    for number, name in enumerate(("NODE", "WAY", "RELATION")):
        value = member_type.value.add()
        value.name = name
        value.number = number
    add_field(relation, "id", 1, INT64)
    add_field(relation, "keys", 2, UINT32, REPEATED, packed=True)
    add_field(relation, "vals", 3, UINT32, REPEATED, packed=True)
    add_field(relation, "info", 4, MESSAGE, type_name="Info")
    add_field(relation, "roles_sid", 8, INT32, REPEATED, packed=True)
    add_field(relation, "memids", 9, SINT64, REPEATED, packed=True)
    add_field(relation, "types", 10, ENUM, REPEATED, type_name="Relation.MemberType", packed=True)

    return proto


DESCRIPTOR = register(_file_proto())

HeaderBBox = message_class(DESCRIPTOR, "HeaderBBox")
HeaderBlock = message_class(DESCRIPTOR, "HeaderBlock")
StringTable = message_class(DESCRIPTOR, "StringTable")
PrimitiveBlock = message_class(DESCRIPTOR, "PrimitiveBlock")
PrimitiveGroup = message_class(DESCRIPTOR, "PrimitiveGroup")
Info = message_class(DESCRIPTOR, "Info")
DenseInfo = message_class(DESCRIPTOR, "DenseInfo")
ChangeSet = message_class(DESCRIPTOR, "ChangeSet")
Node = message_class(DESCRIPTOR, "Node")
DenseNodes = message_class(DESCRIPTOR, "DenseNodes")
Way = message_class(DESCRIPTOR, "Way")
Relation = message_class(DESCRIPTOR, "Relation")

MEMBER_TYPES = {value.number: value.name.lower() for value in Relation.DESCRIPTOR.enum_types_by_name["MemberType"].values}

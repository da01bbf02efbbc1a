"""Message classes for OSMPBF ``fileformat.proto`` (Blob, BlobHeader)."""

from google.protobuf import descriptor_pb2

from osmsync.protos._builder import BYTES
from osmsync.protos._builder import INT32
from osmsync.protos._builder import PACKAGE
from osmsync.protos._builder import STRING
from osmsync.protos._builder import add_field
from osmsync.protos._builder import add_message
from osmsync.protos._builder import message_class
from osmsync.protos._builder import register


def _file_proto() -> descriptor_pb2.FileDescriptorProto:
    proto = descriptor_pb2.FileDescriptorProto()
    proto.name = "osmsync/fileformat.proto"
    proto.package = PACKAGE
    proto.syntax = "proto2"

    blob = add_message(proto, "Blob")
    blob.oneof_decl.add().name = "data"
    add_field(blob, "raw_size", 2, INT32)
    add_field(blob, "raw", 1, BYTES, oneof_index=0)
    add_field(blob, "zlib_data", 3, BYTES, oneof_index=0)
    add_field(blob, "lzma_data", 4, BYTES, oneof_index=0)
    add_field(blob, "OBSOLETE_bzip2_data", 5, BYTES, oneof_index=0)
    add_field(blob, "lz4_data", 6, BYTES, oneof_index=0)
    add_field(blob, "zstd_data", 7, BYTES, oneof_index=0)

    header = add_message(proto, "BlobHeader")
    add_field(header, "type", 1, STRING)
    add_field(header, "indexdata", 2, BYTES)
    add_field(header, "datasize", 3, INT32)

    return proto


DESCRIPTOR = register(_file_proto())

Blob = message_class(DESCRIPTOR, "Blob")
BlobHeader = message_class(DESCRIPTOR, "BlobHeader")

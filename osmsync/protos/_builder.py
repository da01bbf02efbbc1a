"""Helpers for declaring the OSMPBF protobuf schema without a protoc step.

The message classes are produced from a ``FileDescriptorProto`` registered in
the default descriptor pool, which is what protoc-generated ``_pb2`` modules do
with their serialized descriptors.
"""

from __future__ import annotations

from google.protobuf import descriptor_pb2
from google.protobuf import descriptor_pool
from google.protobuf import message_factory
from google.protobuf.descriptor import FileDescriptor

FieldProto = descriptor_pb2.FieldDescriptorProto

OPTIONAL = FieldProto.LABEL_OPTIONAL
REPEATED = FieldProto.LABEL_REPEATED

BOOL = FieldProto.TYPE_BOOL
BYTES = FieldProto.TYPE_BYTES
ENUM = FieldProto.TYPE_ENUM
INT32 = FieldProto.TYPE_INT32
INT64 = FieldProto.TYPE_INT64
MESSAGE = FieldProto.TYPE_MESSAGE
SINT32 = FieldProto.TYPE_SINT32
SINT64 = FieldProto.TYPE_SINT64
STRING = FieldProto.TYPE_STRING
UINT32 = FieldProto.TYPE_UINT32

PACKAGE = "OSMPBF"


def add_message(file_proto: descriptor_pb2.FileDescriptorProto, name: str) -> descriptor_pb2.DescriptorProto:
    message = file_proto.message_type.add()
    message.name = name
    return message


def add_field(
    message: descriptor_pb2.DescriptorProto,
    name: str,
    number: int,
    type: int,
    label: int = OPTIONAL,
    type_name: str | None = None,
    default: str | None = None,
    packed: bool = False,
    oneof_index: int | None = None,
) -> None:
    field = message.field.add()
    field.name = name
    field.number = number
    field.type = type
    field.label = label
    if type_name is not None:
        field.type_name = f".{PACKAGE}.{type_name}"
    if default is not None:
        field.default_value = default
    if packed:
        field.options.packed = True
    if oneof_index is not None:
        field.oneof_index = oneof_index


def register(file_proto: descriptor_pb2.FileDescriptorProto) -> FileDescriptor:
    pool = descriptor_pool.Default()
    try:
        return pool.FindFileByName(file_proto.name)
    except KeyError:
        return pool.AddSerializedFile(file_proto.SerializeToString())


def message_class(file_descriptor: FileDescriptor, name: str) -> type:
    return message_factory.GetMessageClass(file_descriptor.message_types_by_name[name])

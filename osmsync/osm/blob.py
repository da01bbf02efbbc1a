from __future__ import annotations

import lzma
import zlib
from collections.abc import Generator
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO

import zstd
from google.protobuf.message import DecodeError as ProtobufDecodeError

from osmsync.errors import DecodeError
from osmsync.osm.elements import decode_data_block
from osmsync.osm.elements import decode_header_block
from osmsync.osm.types import Block
from osmsync.protos.fileformat_pb2 import Blob
from osmsync.protos.fileformat_pb2 import BlobHeader
from osmsync.protos.osmformat_pb2 import HeaderBlock
from osmsync.protos.osmformat_pb2 import PrimitiveBlock

# Upper bounds from the OSMPBF format description.
MAX_HEADER_SIZE = 64 * 1024
MAX_BLOB_SIZE = 32 * 1024 * 1024


class BlobType(Enum):
    OSM_HEADER = "OSMHeader"
    OSM_DATA = "OSMData"


@dataclass(frozen=True)
class BlobData:
    type: str
    header_data: bytes
    blob_data: bytes


def _read_exactly(source: BinaryIO, size: int, what: str) -> bytes:
    data = source.read(size)
    if len(data) != size:
        raise DecodeError(f"Truncated {what}: expected {size} bytes, got {len(data)}")
    return data


def read_blob_data(source: BinaryIO) -> BlobData | None:
    data = source.read(4)
    if len(data) == 0:
        return None
    if len(data) != 4:
        raise DecodeError("Truncated blob header length")

    header_size = int.from_bytes(data, "big")
    if header_size > MAX_HEADER_SIZE:
        raise DecodeError(f"Blob header of {header_size} bytes exceeds {MAX_HEADER_SIZE}")

    header_data = _read_exactly(source, header_size, "blob header")
    try:
        blob_header = BlobHeader.FromString(header_data)
    except ProtobufDecodeError as e:
        raise DecodeError("Invalid blob header") from e

    if blob_header.datasize > MAX_BLOB_SIZE:
        raise DecodeError(f"Blob of {blob_header.datasize} bytes exceeds {MAX_BLOB_SIZE}")
    blob_data = _read_exactly(source, blob_header.datasize, "blob")

    return BlobData(type=blob_header.type, header_data=header_data, blob_data=blob_data)


def read_blobs(source: BinaryIO) -> Generator[BlobData, None, None]:
    while True:
        data = read_blob_data(source)
        if data is None:
            return
        yield data


def decompress_blob(blob: Blob) -> bytes:
    try:
        match blob.WhichOneof("data"):
            case "raw":
                return blob.raw
            case "zlib_data":
                return zlib.decompress(blob.zlib_data)
            case "zstd_data":
                return zstd.decompress(blob.zstd_data)
            case "lzma_data":
                return lzma.decompress(blob.lzma_data)
            case None:
                raise DecodeError("Blob has no data")
            case other:
                raise DecodeError(f"Unsupported blob compression: {other}")
    except (zlib.error, lzma.LZMAError, zstd.Error) as e:
        raise DecodeError("Failed to decompress blob") from e


def decode_blob(blob: BlobData) -> Block:
    """Decompresses and decodes one file block.

    Blocks are independent, so this runs in worker threads or processes.
    """
    try:
        data = decompress_blob(Blob.FromString(blob.blob_data))
        match blob.type:
            case BlobType.OSM_HEADER.value:
                return decode_header_block(HeaderBlock.FromString(data))
            case BlobType.OSM_DATA.value:
                return decode_data_block(PrimitiveBlock.FromString(data))
            case _:
                raise DecodeError(f"Unknown blob type: {blob.type}")
    except ProtobufDecodeError as e:
        raise DecodeError(f"Invalid {blob.type} blob") from e

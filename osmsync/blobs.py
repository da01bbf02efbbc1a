from __future__ import annotations

from typing import BinaryIO
from typing import ContextManager
from typing import Protocol

import fsspec
from fsspec.core import url_to_fs


class BlobSource(Protocol):
    def size(self, uri: str) -> int: ...

    def open(self, uri: str) -> ContextManager[BinaryIO]: ...


class FsspecBlobSource:
    """Reads snapshot, diff and state files from any fsspec location."""

    def __init__(self, **storage_options) -> None:
        self.storage_options = storage_options

    def size(self, uri: str) -> int:
        fs, path = url_to_fs(uri, **self.storage_options)
        return fs.size(path)

    def open(self, uri: str) -> ContextManager[BinaryIO]:
        return fsspec.open(uri, "rb", **self.storage_options)

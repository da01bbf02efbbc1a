import fsspec
import pytest

from osmsync.blobs import FsspecBlobSource
from osmsync.helper import join_path


def test_reads_local_files(tmp_path):
    path = tmp_path / "data.bin"
    path.write_bytes(b"abcdef")
    source = FsspecBlobSource()
    assert source.size(str(path)) == 6
    with source.open(str(path)) as f:
        assert f.read() == b"abcdef"


def test_reads_memory_filesystem():
    with fsspec.open("memory://osmsync-tests/state.txt", "wb") as f:
        f.write(b"sequenceNumber=1\n")
    source = FsspecBlobSource()
    with source.open("memory://osmsync-tests/state.txt") as f:
        assert f.read() == b"sequenceNumber=1\n"


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        with FsspecBlobSource().open(str(tmp_path / "missing.osc.gz")):
            pass


@pytest.mark.parametrize(
    "root, parts, expected",
    [
        ("s3://bucket/", ("nodes/",), "s3://bucket/nodes/"),
        ("/data", ("a", "/b/", "c.txt"), "/data/a/b/c.txt"),
        ("root", (), "root"),
    ],
)
def test_join_path(root, parts, expected):
    assert join_path(root, *parts) == expected

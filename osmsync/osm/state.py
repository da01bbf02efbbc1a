from __future__ import annotations

import re
from datetime import datetime
from datetime import timezone
from typing import BinaryIO

from osmsync.errors import DecodeError
from osmsync.osm.types import ReplicationState

_PROPERTY = re.compile(r"^\s*([A-Za-z][\w.]*)\s*[=:]\s*(.*?)\s*$")


def parse_timestamp(value: str) -> datetime:
    timestamp = datetime.fromisoformat(value.replace("\\:", ":"))
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp


def read_properties(text: str) -> dict[str, str]:
    properties = {}
    for line in text.splitlines():
        if not line.strip() or line.lstrip().startswith(("#", "!")):
            continue
        m = _PROPERTY.match(line)
        if m:
            properties[m.group(1)] = m.group(2)
    return properties


def decode_state(source: BinaryIO) -> ReplicationState:
    """Reads a replication ``state.txt`` file.

    The file is in Java properties format, so colons in the timestamp are
    escaped, e.g. ``timestamp=2020-01-01T00\\:00\\:00Z``.
    """
    try:
        properties = read_properties(source.read().decode("utf-8"))
    except UnicodeDecodeError as e:
        raise DecodeError("State file is not valid UTF-8") from e

    try:
        sequence_number = int(properties["sequenceNumber"])
        timestamp = parse_timestamp(properties["timestamp"])
    except KeyError as e:
        raise DecodeError(f"State file is missing {e.args[0]}") from e
    except ValueError as e:
        raise DecodeError(f"Invalid state file: {e}") from e

    return ReplicationState(sequence_number=sequence_number, timestamp=timestamp)

from __future__ import annotations

from dataclasses import dataclass


class OsmSyncError(Exception):
    pass


class DecodeError(OsmSyncError):
    """Malformed snapshot, diff or state input."""


class StoreError(OsmSyncError):
    """A read or write against the destination store failed."""


@dataclass(frozen=True)
class UnresolvedReferenceAnomaly:
    """A way or relation referenced ids that were not in the cache.

    Recorded and logged, never raised: the entity is kept without geometry (or
    with the parts that did resolve, for relations).
    """

    entity_type: str
    entity_id: int
    missing: tuple[int, ...]

"""Replays one replication diff against the store.

The store header holds the last applied sequence number. A cycle reads it,
applies ``sequence_number + 1`` and only then writes the new header, so a
failed cycle leaves the header untouched and the next run replays the same
diff. Upserts and deletes by id are idempotent, which makes that replay safe.
"""

from __future__ import annotations

import gzip
import itertools
import logging
from collections.abc import Iterable
from enum import Enum

from osmsync.blobs import BlobSource
from osmsync.blobs import FsspecBlobSource
from osmsync.cache import ReferenceCache
from osmsync.config import PipelineConfig
from osmsync.errors import StoreError
from osmsync.errors import UnresolvedReferenceAnomaly
from osmsync.geometry import GeometryBuilder
from osmsync.geometry import Reprojector
from osmsync.helper import join_path
from osmsync.osm.changes import decode_changes
from osmsync.osm.state import decode_state
from osmsync.osm.types import Change
from osmsync.osm.types import ChangeType
from osmsync.osm.types import Header
from osmsync.osm.types import OsmEntity
from osmsync.osm.types import OsmNode
from osmsync.osm.types import OsmRelation
from osmsync.osm.types import OsmWay
from osmsync.osm.types import ReplicationState
from osmsync.store.base import EntityTable
from osmsync.store.base import Store

logger = logging.getLogger(__name__)

CHANGE_EXTENSION = "osc.gz"
STATE_EXTENSION = "state.txt"

MAX_SEQUENCE_NUMBER = 999_999_999


class UpdateState(Enum):
    READ_STATE = "read_state"
    RESOLVE_DIFF_URI = "resolve_diff_uri"
    STREAMING_DIFF = "streaming_diff"
    APPLYING = "applying"
    PERSIST_STATE = "persist_state"
    IDLE = "idle"
    FAILED = "failed"


def resolve(replication_url: str, sequence_number: int, extension: str) -> str:
    """Location of a replication file, e.g. ``{url}/001/234/567.osc.gz``."""
    if not 0 <= sequence_number <= MAX_SEQUENCE_NUMBER:
        raise ValueError(f"Sequence number {sequence_number} out of range")
    s = f"{sequence_number:09d}"
    return join_path(replication_url, s[0:3], s[3:6], f"{s[6:9]}.{extension}")


class Updater:
    def __init__(
        self,
        config: PipelineConfig,
        store: Store,
        cache: ReferenceCache,
        blob_source: BlobSource | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.cache = cache
        self.blob_source = blob_source or FsspecBlobSource()
        self.builder = GeometryBuilder(cache, Reprojector(config.source_crs, config.target_crs))
        self.state = UpdateState.IDLE

    @property
    def anomalies(self) -> list[UnresolvedReferenceAnomaly]:
        return self.builder.anomalies

    def _transition(self, state: UpdateState) -> None:
        logger.debug("Update %s -> %s", self.state.value, state.value)
        self.state = state

    def _table(self, entity: OsmEntity) -> EntityTable:
        match entity:
            case OsmNode():
                return self.store.nodes
            case OsmWay():
                return self.store.ways
            case OsmRelation():
                return self.store.relations
            case _:
                raise TypeError(f"Not an OSM entity: {entity!r}")

    def refresh_cache(self, entity: OsmEntity) -> None:
        match entity:
            case OsmNode() if entity.coordinate is not None:
                self.cache.put_coordinate(entity.id, entity.coordinate)
            case OsmWay():
                self.cache.put_references(entity.id, entity.nodes)

    def prepare(self, change: Change) -> list[OsmEntity]:
        """Refreshes the cache and builds geometry, entity by entity, so that
        later entities of the change see the earlier ones.

        Deletes only need their ids, so they pass through untouched.
        """
        if change.type is ChangeType.DELETE:
            return list(change.entities)

        entities = []
        for entity in change.entities:
            self.refresh_cache(entity)
            entities.append(self.builder(entity))
        return entities

    def save(self, change_type: ChangeType, entities: Iterable[OsmEntity]) -> None:
        # Runs of the same entity type go out together, which keeps file order.
        for table_type, group in itertools.groupby(entities, key=type):
            run = list(group)
            table = self._table(run[0])
            match change_type:
                case ChangeType.CREATE | ChangeType.MODIFY:
                    table.upsert_batch(run)
                case ChangeType.DELETE:
                    table.delete_batch([entity.id for entity in run])
            logger.debug("Applied %s of %d %s", change_type.value, len(run), table_type.__name__)

    def read_state(self, uri: str) -> ReplicationState:
        with self.blob_source.open(uri) as fin:
            return decode_state(fin)

    def run(self) -> Header:
        try:
            self._transition(UpdateState.READ_STATE)
            header = self.store.headers.read()
            if header is None:
                raise StoreError("Store has no header, import a snapshot first")
            if header.replication_url is None or header.sequence_number is None:
                raise StoreError("Store header carries no replication url or sequence number")

            self._transition(UpdateState.RESOLVE_DIFF_URI)
            sequence_number = header.sequence_number + 1
            change_uri = resolve(header.replication_url, sequence_number, CHANGE_EXTENSION)
            state_uri = resolve(header.replication_url, sequence_number, STATE_EXTENSION)
            logger.info("Applying replication sequence %d from %s", sequence_number, change_uri)

            self._transition(UpdateState.STREAMING_DIFF)
            with self.blob_source.open(change_uri) as raw, gzip.open(raw) as fin:
                for change in decode_changes(fin):
                    self._transition(UpdateState.APPLYING)
                    self.save(change.type, self.prepare(change))
                    self._transition(UpdateState.STREAMING_DIFF)

            self._transition(UpdateState.PERSIST_STATE)
            state = self.read_state(state_uri)
            new_header = header.advance(state)
            self.store.headers.write(new_header)
        except Exception:
            self._transition(UpdateState.FAILED)
            logger.error("Replication update failed, the store header was left unchanged")
            raise

        self._transition(UpdateState.IDLE)
        logger.info("Store is now at sequence %d (%s)", new_header.sequence_number, new_header.timestamp)
        return new_header


def run_update_once(
    config: PipelineConfig,
    *,
    store: Store,
    cache: ReferenceCache,
    blob_source: BlobSource | None = None,
) -> Header:
    return Updater(config, store, cache, blob_source).run()


def catch_up(
    config: PipelineConfig,
    *,
    store: Store,
    cache: ReferenceCache,
    blob_source: BlobSource | None = None,
    limit: int | None = None,
) -> list[Header]:
    """Applies diffs until the next one is not published yet.

    Stops after ``limit`` diffs when given. Any other error propagates after
    the headers applied so far have been committed.
    """
    headers: list[Header] = []
    updater = Updater(config, store, cache, blob_source)
    while limit is None or len(headers) < limit:
        try:
            headers.append(updater.run())
        except FileNotFoundError:
            logger.info("No further diff available after %d updates", len(headers))
            break
    return headers

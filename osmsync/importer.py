from __future__ import annotations

import logging
from collections.abc import Generator
from collections.abc import Iterator
from concurrent.futures import ProcessPoolExecutor
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from dataclasses import field
from enum import Enum

from tqdm import tqdm

from osmsync.blobs import BlobSource
from osmsync.blobs import FsspecBlobSource
from osmsync.cache import ReferenceCache
from osmsync.config import PipelineConfig
from osmsync.errors import UnresolvedReferenceAnomaly
from osmsync.geometry import GeometryBuilder
from osmsync.geometry import Reprojector
from osmsync.osm.blob import BlobData
from osmsync.osm.blob import decode_blob
from osmsync.osm.blob import read_blobs
from osmsync.osm.types import Block
from osmsync.osm.types import DataBlock
from osmsync.osm.types import HeaderBlock
from osmsync.osm.types import OsmNode
from osmsync.osm.types import OsmRelation
from osmsync.osm.types import OsmWay
from osmsync.store.base import Store
from osmsync.stream import batched
from osmsync.stream import map_in_source_order

logger = logging.getLogger(__name__)


class ImportState(Enum):
    IDLE = "idle"
    DECODING = "decoding"
    BATCH_READY = "batch_ready"
    APPLYING = "applying"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ImportResult:
    blocks: int = 0
    nodes: int = 0
    ways: int = 0
    relations: int = 0
    anomalies: list[UnresolvedReferenceAnomaly] = field(default_factory=list)


def read_blob_data(uri: str, blob_source: BlobSource) -> Generator[BlobData, None, None]:
    with blob_source.open(uri) as fin:
        yield from read_blobs(fin)


def track_progress(blobs: Iterator[BlobData], total: int | None, enabled: bool) -> Generator[BlobData, None, None]:
    with tqdm(total=total, desc="Reading blobs", unit="B", unit_scale=True, disable=not enabled) as progress:
        for blob in blobs:
            # Length prefix, header and blob, i.e. the bytes read from the file.
            progress.update(4 + len(blob.header_data) + len(blob.blob_data))
            yield blob


def populate_cache(blocks: list[Block], cache: ReferenceCache) -> None:
    for block in blocks:
        match block:
            case DataBlock():
                cache.put_coordinates(
                    (node.id, node.coordinate) for node in block.all_nodes() if node.coordinate is not None
                )
                cache.put_all_references((way.id, way.nodes) for way in block.ways)
            case HeaderBlock():
                pass


def build_geometries(block: Block, builder: GeometryBuilder) -> Block:
    match block:
        case DataBlock():
            return DataBlock(
                nodes=[builder(node) for node in block.nodes],
                dense_nodes=[builder(node) for node in block.dense_nodes],
                ways=[builder(way) for way in block.ways],
                relations=[builder(relation) for relation in block.relations],
            )
        case HeaderBlock():
            return block


class Importer:
    """Loads a snapshot into an empty store.

    Blocks are decoded concurrently but re-linearized before they reach the
    single lane that fills the cache, builds geometry and writes to the store.
    Each batch goes through those three phases before the next one starts.
    """

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
        self.state = ImportState.IDLE

    def _transition(self, state: ImportState) -> None:
        logger.debug("Import %s -> %s", self.state.value, state.value)
        self.state = state

    def decode(self, blobs: Iterator[BlobData]) -> Iterator[Block]:
        executor_factory = ProcessPoolExecutor if self.config.use_processes else ThreadPoolExecutor
        return map_in_source_order(decode_blob, blobs, self.config.concurrency, executor_factory)

    def apply(self, batch: list[Block]) -> ImportResult:
        populate_cache(batch, self.cache)
        batch = [build_geometries(block, self.builder) for block in batch]
        return self.persist(batch)

    def persist(self, batch: list[Block]) -> ImportResult:
        nodes: list[OsmNode] = []
        ways: list[OsmWay] = []
        relations: list[OsmRelation] = []
        for block in batch:
            match block:
                case HeaderBlock(header=header):
                    self.store.headers.write(header)
                case DataBlock():
                    nodes.extend(block.all_nodes())
                    ways.extend(block.ways)
                    relations.extend(block.relations)

        if nodes:
            self.store.nodes.upsert_batch(nodes)
        if ways:
            self.store.ways.upsert_batch(ways)
        if relations:
            self.store.relations.upsert_batch(relations)

        logger.debug(
            "Persisted %d blocks: %d nodes, %d ways, %d relations", len(batch), len(nodes), len(ways), len(relations)
        )
        return ImportResult(blocks=len(batch), nodes=len(nodes), ways=len(ways), relations=len(relations))

    def run(self, snapshot_uri: str) -> ImportResult:
        logger.info("Importing %s", snapshot_uri)
        result = ImportResult(anomalies=self.builder.anomalies)

        total = self.blob_source.size(snapshot_uri) if self.config.progress else None
        blobs = read_blob_data(snapshot_uri, self.blob_source)
        progress = track_progress(blobs, total, self.config.progress)
        blocks = self.decode(progress)
        batches = batched(blocks, self.config.batch_size)
        try:
            while True:
                self._transition(ImportState.DECODING)
                batch = next(batches, None)
                if batch is None:
                    break
                self._transition(ImportState.BATCH_READY)
                self._transition(ImportState.APPLYING)
                applied = self.apply(batch)
                result.blocks += applied.blocks
                result.nodes += applied.nodes
                result.ways += applied.ways
                result.relations += applied.relations
                self._transition(ImportState.IDLE)
        except Exception:
            self._transition(ImportState.FAILED)
            logger.error("Import of %s failed", snapshot_uri)
            raise
        finally:
            batches.close()
            blocks.close()
            progress.close()
            blobs.close()

        self._transition(ImportState.DONE)
        logger.info(
            "Imported %d nodes, %d ways and %d relations with %d unresolved geometries",
            result.nodes,
            result.ways,
            result.relations,
            len(result.anomalies),
        )
        return result


def run_import(
    snapshot_uri: str,
    config: PipelineConfig,
    *,
    store: Store,
    cache: ReferenceCache,
    blob_source: BlobSource | None = None,
) -> ImportResult:
    return Importer(config, store, cache, blob_source).run(snapshot_uri)

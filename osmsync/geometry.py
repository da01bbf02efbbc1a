"""Geometry reconstruction for nodes, ways and relations.

Ways and relations only carry ids, so their coordinates come from the
``ReferenceCache`` populated earlier in the same pass. Assembly only reads the
cache; reprojection happens afterwards on the finished geometry.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import replace

import shapely.ops
from pyproj import CRS
from pyproj import Transformer
from shapely.geometry import GeometryCollection
from shapely.geometry import LineString
from shapely.geometry import Point
from shapely.geometry import Polygon
from shapely.geometry.base import BaseGeometry

from osmsync.cache import Coordinate
from osmsync.cache import ReferenceCache
from osmsync.errors import UnresolvedReferenceAnomaly
from osmsync.osm.types import OsmEntity
from osmsync.osm.types import OsmNode
from osmsync.osm.types import OsmRelation
from osmsync.osm.types import OsmWay
from osmsync.osm.types import entity_type

logger = logging.getLogger(__name__)

# A ring needs at least three distinct points plus the closing one.
MIN_RING_SIZE = 4


class UnresolvedReference(Exception):
    def __init__(self, missing: Sequence[int]) -> None:
        super().__init__(f"Missing references: {list(missing)}")
        self.missing = tuple(missing)


def resolve_coordinates(node_ids: Sequence[int], cache: ReferenceCache) -> list[Coordinate]:
    coordinates = cache.get_coordinates(node_ids)
    missing = [node_id for node_id, coordinate in zip(node_ids, coordinates) if coordinate is None]
    if missing:
        raise UnresolvedReference(missing)
    return coordinates


def line_or_ring(node_ids: Sequence[int], coordinates: Sequence[Coordinate]) -> LineString | Polygon:
    if len(node_ids) >= MIN_RING_SIZE and node_ids[0] == node_ids[-1]:
        return Polygon(coordinates)
    if len(coordinates) == 1:
        # Degenerate single node way, shapely lines need two coordinates.
        return LineString([coordinates[0], coordinates[0]])
    return LineString(coordinates)


def node_geometry(node: OsmNode, cache: ReferenceCache) -> Point:
    coordinate = node.coordinate
    if coordinate is None:
        coordinate = cache.get_coordinate(node.id)
        if coordinate is None:
            raise UnresolvedReference([node.id])
    return Point(coordinate)


def way_geometry(way: OsmWay, cache: ReferenceCache) -> LineString | Polygon | None:
    if not way.nodes:
        return None
    return line_or_ring(way.nodes, resolve_coordinates(way.nodes, cache))


def relation_geometry(
    relation: OsmRelation,
    cache: ReferenceCache,
    missing: list[int] | None = None,
) -> GeometryCollection | None:
    """Collects the resolvable members of a relation into one geometry.

    Node members become points and way members become lines or rings, in
    member order. Relation members are never expanded. Ids that cannot be
    resolved are appended to ``missing`` and their member is dropped.
    """
    if missing is None:
        missing = []

    node_ids = [member.id for member in relation.members if member.type == "node"]
    way_ids = [member.id for member in relation.members if member.type == "way"]
    coordinates = dict(zip(node_ids, cache.get_coordinates(node_ids)))
    references = dict(zip(way_ids, cache.get_all_references(way_ids)))

    parts: list[BaseGeometry] = []
    for member in relation.members:
        match member.type:
            case "node":
                coordinate = coordinates[member.id]
                if coordinate is None:
                    missing.append(member.id)
                else:
                    parts.append(Point(coordinate))
            case "way":
                refs = references[member.id]
                if not refs:
                    missing.append(member.id)
                    continue
                try:
                    parts.append(line_or_ring(refs, resolve_coordinates(refs, cache)))
                except UnresolvedReference as e:
                    missing.extend(e.missing)
            case "relation":
                continue

    if not parts:
        return None
    return GeometryCollection(parts)


class Reprojector:
    """Transforms every coordinate of a geometry between two CRSs."""

    def __init__(self, source_crs: str = "EPSG:4326", target_crs: str = "EPSG:3857") -> None:
        self.source_crs = CRS.from_user_input(source_crs)
        self.target_crs = CRS.from_user_input(target_crs)
        self.is_identity = self.source_crs == self.target_crs
        self.transformer = (
            None if self.is_identity else Transformer.from_crs(self.source_crs, self.target_crs, always_xy=True)
        )

    def __call__(self, geometry: BaseGeometry | None) -> BaseGeometry | None:
        if geometry is None or self.transformer is None:
            return geometry
        return shapely.ops.transform(self.transformer.transform, geometry)


class GeometryBuilder:
    def __init__(self, cache: ReferenceCache, reprojector: Reprojector | None = None) -> None:
        self.cache = cache
        self.reprojector = reprojector or Reprojector("EPSG:4326", "EPSG:4326")
        self.anomalies: list[UnresolvedReferenceAnomaly] = []

    def _report(self, entity: OsmEntity, missing: Sequence[int]) -> None:
        anomaly = UnresolvedReferenceAnomaly(entity_type(entity), entity.id, tuple(missing))
        self.anomalies.append(anomaly)
        logger.warning(
            "Unresolved references in %s %d: %s", anomaly.entity_type, anomaly.entity_id, list(anomaly.missing)
        )

    def geometry(self, entity: OsmEntity) -> BaseGeometry | None:
        try:
            match entity:
                case OsmNode():
                    geometry = node_geometry(entity, self.cache)
                case OsmWay():
                    geometry = way_geometry(entity, self.cache)
                case OsmRelation():
                    missing: list[int] = []
                    geometry = relation_geometry(entity, self.cache, missing)
                    if missing:
                        self._report(entity, missing)
                case _:
                    raise TypeError(f"Not an OSM entity: {entity!r}")
        except UnresolvedReference as e:
            self._report(entity, e.missing)
            return None
        return self.reprojector(geometry)

    def __call__(self, entity: OsmEntity) -> OsmEntity:
        return replace(entity, geometry=self.geometry(entity))

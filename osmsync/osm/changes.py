from __future__ import annotations

from collections.abc import Generator
from typing import BinaryIO

from lxml import etree

from osmsync.errors import DecodeError
from osmsync.osm.state import parse_timestamp
from osmsync.osm.types import Change
from osmsync.osm.types import ChangeType
from osmsync.osm.types import OsmEntity
from osmsync.osm.types import OsmInfo
from osmsync.osm.types import OsmNode
from osmsync.osm.types import OsmRelation
from osmsync.osm.types import OsmRelationMember
from osmsync.osm.types import OsmTags
from osmsync.osm.types import OsmWay

ACTIONS = tuple(change_type.value for change_type in ChangeType)
MEMBER_TYPES = ("node", "way", "relation")


def _optional_int(value: str | None) -> int | None:
    return None if value is None else int(value)


def _optional_float(value: str | None) -> float | None:
    return None if value is None else float(value)


def decode_info(element: etree._Element) -> OsmInfo:
    timestamp = element.get("timestamp")
    return OsmInfo(
        version=_optional_int(element.get("version")),
        timestamp=parse_timestamp(timestamp) if timestamp else None,
        changeset=_optional_int(element.get("changeset")),
        uid=_optional_int(element.get("uid")),
        user=element.get("user"),
    )


def decode_tags(element: etree._Element) -> OsmTags | None:
    tags = {tag.get("k"): tag.get("v") for tag in element.iterchildren("tag")}
    return tags or None


def decode_entity(element: etree._Element) -> OsmEntity:
    id = int(element.get("id"))
    match element.tag:
        case "node":
            return OsmNode(
                id=id,
                info=decode_info(element),
                tags=decode_tags(element),
                latitude=_optional_float(element.get("lat")),
                longitude=_optional_float(element.get("lon")),
            )
        case "way":
            return OsmWay(
                id=id,
                info=decode_info(element),
                tags=decode_tags(element),
                nodes=[int(nd.get("ref")) for nd in element.iterchildren("nd")],
            )
        case "relation":
            members = []
            for member in element.iterchildren("member"):
                member_type = member.get("type")
                if member_type not in MEMBER_TYPES:
                    raise DecodeError(f"Unknown member type {member_type!r} in relation {id}")
                members.append(
                    OsmRelationMember(id=int(member.get("ref")), role=member.get("role", ""), type=member_type)
                )
            return OsmRelation(id=id, info=decode_info(element), tags=decode_tags(element), members=members)
        case _:
            raise DecodeError(f"Unexpected element <{element.tag}> in change")


def decode_changes(source: BinaryIO) -> Generator[Change, None, None]:
    """Streams the ``<create>``, ``<modify>`` and ``<delete>`` sections of an
    osmChange document, in file order."""
    try:
        for _, element in etree.iterparse(source, events=("end",), tag=ACTIONS):
            try:
                entities = [decode_entity(child) for child in element.iterchildren(*MEMBER_TYPES)]
            except (TypeError, ValueError) as e:
                raise DecodeError(f"Invalid entity in <{element.tag}>: {e}") from e
            change = Change(type=ChangeType(element.tag), entities=entities)

            # Release the parsed section and everything before it.
            element.clear()
            while element.getprevious() is not None:
                del element.getparent()[0]

            yield change
    except etree.XMLSyntaxError as e:
        raise DecodeError(f"Malformed change file: {e}") from e

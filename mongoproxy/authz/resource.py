"""Resources that authorization rules apply to, and helpers around them."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Mapping


@dataclass(frozen=True)
class Resource:
    """A global, database, collection or field level resource."""

    is_global: bool = False
    db: str = ""
    collection: str = ""
    field: str = ""

    def __str__(self) -> str:
        if self.is_global:
            return "-"
        return "/".join(part or "*" for part in (self.db, self.collection, self.field))


def get_resource(mapping: Mapping[str, str]) -> Resource:
    """Build a resource from a policy's resource entry."""
    if mapping.get("Global") == "*":
        return Resource(is_global=True)
    db = mapping.get("Database", "")
    if not db:
        raise ValueError(
            "must specify a db or all dbs ('*') for Database if Global is not '*'"
        )
    field = mapping.get("Field", "")
    collection = mapping.get("Collection", "")
    if field and not collection:
        collection = "*"
    return Resource(db=db, collection=collection, field=field)


def split_uri(uri: str) -> tuple[list[str], list[str], list[str]]:
    """Split ``db/coll/fld`` into lists of databases, collections and fields."""
    parts = uri.split("/")
    if len(parts) > 3:
        raise ValueError(f"too many parts in uri: {uri}")
    parts += ["*"] * (3 - len(parts))
    dbs, colls, flds = (part.split(",") for part in parts)
    return dbs, colls, flds


def resource_from_uri(uri: str) -> Resource:
    """Build a resource from a ``db/coll/field`` URI; ``-`` means global."""
    dbs, colls, flds = split_uri(uri)
    collection = colls[0] if colls else "*"
    field = flds[0] if flds else "*"
    if dbs and dbs[0] == "-":
        return Resource(is_global=True, collection=collection, field=field)
    db = dbs[0] if dbs else "*"
    return Resource(db=db, collection=collection, field=field)


def expand_resource(resource: Resource) -> list[Resource]:
    """List every configured resource that could match ``resource``, most specific first."""
    if resource.is_global:
        return [Resource(is_global=True)]
    if resource.field:
        return [
            resource,
            replace(resource, field="*"),
            replace(resource, collection="*"),
            replace(resource, collection="*", field="*"),
            replace(resource, db="*"),
            replace(resource, db="*", field="*"),
            replace(resource, db="*", collection="*"),
            replace(resource, db="*", collection="*", field="*"),
        ]
    if resource.collection:
        return [
            resource,
            replace(resource, collection="*"),
            replace(resource, db="*", collection="*"),
        ]
    if resource.db and resource.db != "*":
        return [resource, Resource(is_global=resource.is_global, db="*")]
    return [resource]


def append_if_missing(items: Iterable[str], others: Iterable[str]) -> list[str]:
    """Return ``items`` followed by each of ``others`` not already in ``items``."""
    original = list(items)
    combined = list(original)
    combined.extend(item for item in others if item not in original)
    return combined
"""Document codec.

Resources serialise to JSON with reserved `$schema`/`kind` metadata, flat
snake_case fact fields, a `_links` section (relation -> href, optional title
and media type) and an `_embedded` section (collection -> inline records).
Rendering is deterministic: the same resource always produces the same bytes.
"""

from __future__ import annotations

import json
from pathlib import Path

from relgraph.core.result import Err, Ok, Result
from relgraph.core.structured import StrDict, as_obj_list, as_str_dict, get_str
from relgraph.services.graph.errors import GraphError
from relgraph.services.graph.model import (
    RESERVED_FIELDS,
    Entry,
    JsonValue,
    Link,
    Resource,
    ResourceKind,
    ResourceTree,
)

LOADED_CYCLE = "published"
_ENTRY_RESERVED = frozenset({"_links"})


def _links_payload(links: dict[str, Link]) -> dict[str, object]:
    out: dict[str, object] = {}
    for rel, link in links.items():
        item: dict[str, object] = {"href": link.href}
        if link.title is not None:
            item["title"] = link.title
        if link.media_type is not None:
            item["type"] = link.media_type
        out[rel] = item
    return out


def _entry_payload(entry: Entry) -> dict[str, object]:
    out: dict[str, object] = {k: v for k, v in entry.fields.items() if v is not None}
    if entry.links:
        out["_links"] = _links_payload(entry.links)
    return out


def to_payload(resource: Resource) -> dict[str, object]:
    payload: dict[str, object] = {}
    if "$schema" in resource.meta:
        payload["$schema"] = resource.meta["$schema"]
    payload["kind"] = resource.kind.value
    for key, value in resource.meta.items():
        if key != "$schema":
            payload[key] = value
    for key, value in resource.fields.items():
        if value is not None:
            payload[key] = value
    if resource.links:
        payload["_links"] = _links_payload(resource.links)
    if resource.embedded:
        payload["_embedded"] = {
            name: [_entry_payload(e) for e in entries]
            for name, entries in resource.embedded.items()
        }
    return payload


def render(resource: Resource) -> str:
    return json.dumps(to_payload(resource), indent=2, ensure_ascii=False) + "\n"


def _parse_value(value: object) -> JsonValue | None:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    items = as_obj_list(value)
    if items is not None and all(isinstance(i, str) for i in items):
        return [str(i) for i in items]
    return None


def _parse_links(obj: object, path: str) -> Result[dict[str, Link], str]:
    if obj is None:
        return Ok({})
    table = as_str_dict(obj)
    if table is None:
        return Err(f"{path}: _links must be an object")
    links: dict[str, Link] = {}
    for rel, raw in table.items():
        item = as_str_dict(raw)
        href = get_str(item, "href") if item is not None else None
        if item is None or href is None:
            return Err(f"{path}: link '{rel}' has no href")
        links[rel] = Link(href=href, title=get_str(item, "title"), media_type=get_str(item, "type"))
    return Ok(links)


def _parse_fields(
    data: StrDict, path: str, *, reserved: frozenset[str] = RESERVED_FIELDS
) -> Result[dict[str, JsonValue], str]:
    fields: dict[str, JsonValue] = {}
    for key, raw in data.items():
        if key in reserved:
            continue
        value = _parse_value(raw)
        if value is None:
            return Err(f"{path}: field '{key}' has an unsupported value")
        fields[key] = value
    return Ok(fields)


def from_payload(path: str, data: StrDict, *, cycle: str = LOADED_CYCLE) -> Result[Resource, str]:
    """Rebuild a Resource from a parsed document."""
    kind_name = get_str(data, "kind")
    try:
        kind = ResourceKind(kind_name)
    except ValueError:
        return Err(f"{path}: unknown kind {kind_name!r}")

    fields = _parse_fields(data, path)
    if isinstance(fields, Err):
        return fields
    links = _parse_links(data.get("_links"), path)
    if isinstance(links, Err):
        return links

    embedded: dict[str, list[Entry]] = {}
    raw_embedded = data.get("_embedded")
    if raw_embedded is not None:
        table = as_str_dict(raw_embedded)
        if table is None:
            return Err(f"{path}: _embedded must be an object")
        for name, raw_entries in table.items():
            items = as_obj_list(raw_entries)
            if items is None:
                return Err(f"{path}: _embedded.{name} must be a list")
            entries: list[Entry] = []
            for raw in items:
                item = as_str_dict(raw)
                if item is None:
                    return Err(f"{path}: _embedded.{name} holds a non-object")
                entry_fields = _parse_fields(item, path, reserved=_ENTRY_RESERVED)
                if isinstance(entry_fields, Err):
                    return entry_fields
                entry_links = _parse_links(item.get("_links"), path)
                if isinstance(entry_links, Err):
                    return entry_links
                entries.append(Entry(fields=entry_fields.value, links=entry_links.value))
            embedded[name] = entries

    meta = {
        k: v
        for k, v in data.items()
        if k in ("$schema", "title", "stability") and isinstance(v, str)
    }
    return Ok(
        Resource(
            kind=kind,
            path=path,
            fields=fields.value,
            links=links.value,
            embedded=embedded,
            meta=meta,
            cycle=cycle,
        )
    )


def load_tree(root: Path) -> Result[ResourceTree, GraphError]:
    """Load every document under ``root`` into a ResourceTree."""
    if not root.is_dir():
        return Err(GraphError(kind="tree_unreadable", message=f"not a directory: {root}"))

    resources: dict[str, Resource] = {}
    for file_path in sorted(root.rglob("*.json")):
        rel = file_path.relative_to(root).as_posix()
        try:
            obj: object = json.loads(file_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            return Err(GraphError(kind="tree_unreadable", message=f"{rel}: {e}", hint=str(root)))
        data = as_str_dict(obj)
        if data is None:
            return Err(
                GraphError(kind="tree_unreadable", message=f"{rel}: root must be a JSON object")
            )
        parsed = from_payload(rel, data)
        if isinstance(parsed, Err):
            return Err(GraphError(kind="tree_unreadable", message=parsed.error, hint=str(root)))
        resources[rel] = parsed.value

    return Ok(ResourceTree(resources=resources, cycle=LOADED_CYCLE))

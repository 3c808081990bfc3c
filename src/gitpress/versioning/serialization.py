"""Canonical on-disk encoding of entities.

Entities are stored as small YAML documents::

    fields:
      post_status: publish
      post_title: Hello
    kind: posts
    references:
      category:
        ids:
        - 1F0A...
        kind: terms
    vp_id: 8C2E...

The encoding is canonical: keys are sorted at every level, multi-valued
references are sorted stable-id lists, and the dumper settings are fixed,
so two saves of the same logical state yield byte-identical files.
"""

from __future__ import annotations

from typing import Any

import yaml

from gitpress.errors import SerializationError
from gitpress.versioning.models import Entity, Reference

FILE_SUFFIX = ".yml"


def entity_to_document(entity: Entity) -> dict[str, Any]:
    """Build the plain-dict form of *entity* used for YAML output."""
    references: dict[str, dict[str, Any]] = {}
    for ref in entity.references:
        group = references.setdefault(
            ref.name, {"kind": ref.kind, "ids": []}
        )
        if group["kind"] != ref.kind:
            raise SerializationError(
                f"Reference '{ref.name}' of {entity.kind} {entity.stable_id} "
                f"mixes kinds {group['kind']} and {ref.kind}"
            )
        group["ids"].append(ref.stable_id)

    document: dict[str, Any] = {
        "kind": entity.kind,
        "vp_id": entity.stable_id,
        "fields": dict(entity.fields),
    }
    if references:
        document["references"] = references
    return document


def serialize(entity: Entity) -> bytes:
    """Encode *entity* as canonical UTF-8 YAML bytes.

    Raises:
        SerializationError: If a field value has no YAML representation.
    """
    try:
        text = yaml.safe_dump(
            entity_to_document(entity),
            sort_keys=True,
            default_flow_style=False,
            allow_unicode=True,
            width=4096,
        )
    except yaml.representer.RepresenterError as exc:
        raise SerializationError(
            f"Cannot serialize {entity.kind} {entity.stable_id}: {exc}"
        ) from exc
    return text.encode("utf-8")


def deserialize(data: bytes | str) -> Entity:
    """Decode an entity file.

    Raises:
        SerializationError: If the document is not valid YAML or lacks
            the required keys.
    """
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    try:
        document = yaml.safe_load(data)
    except yaml.YAMLError as exc:
        raise SerializationError(f"Invalid entity file: {exc}") from exc

    if not isinstance(document, dict):
        raise SerializationError("Entity file root must be a mapping")
    for key in ("kind", "vp_id"):
        if not document.get(key):
            raise SerializationError(f"Entity file is missing '{key}'")

    fields = document.get("fields") or {}
    if not isinstance(fields, dict):
        raise SerializationError("'fields' must be a mapping")

    references: list[Reference] = []
    for name, group in (document.get("references") or {}).items():
        if not isinstance(group, dict) or "kind" not in group:
            raise SerializationError(
                f"Reference '{name}' must be a mapping with a 'kind'"
            )
        for stable_id in group.get("ids") or []:
            references.append(
                Reference(name=name, kind=group["kind"], stable_id=str(stable_id))
            )

    return Entity(
        kind=str(document["kind"]),
        stable_id=str(document["vp_id"]),
        fields=fields,
        references=tuple(references),
    )


def entity_path(storage_dir: str, kind: str, stable_id: str) -> str:
    """Relative POSIX path of the file holding *stable_id* of *kind*."""
    prefix = storage_dir.strip("/")
    name = f"{kind}/{stable_id}{FILE_SUFFIX}"
    return f"{prefix}/{name}" if prefix else name

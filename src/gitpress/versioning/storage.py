"""Entity storages: one per tracked entity kind.

An ``EntityStorage`` turns host rows into canonical entity files and
back.  It never writes to disk or git itself; ``save`` registers a merge
patch and ``delete`` a ``FileMutation`` with the request's ``Committer``,
which applies everything at teardown.

Saving
------
1. Identify the entity: ``fields[id_field]`` is a volatile row id and is
   resolved through the identity map; ``fields["vp_id"]`` is an
   already-stable id and must be known.
2. Split reference fields from plain fields.  Reference values given as
   ints (or digit strings) are volatile ids and are resolved; 32-char hex
   strings (any case) are stable ids and must be known, otherwise they
   are dropped as dangling.  Anything else is dropped as a miss.
3. Register a patch that merges those fields over the file as it is at
   commit time, so repeated saves within one request coalesce into one
   final file and concurrent requests keep each other's fields.

Concrete storages only declare their kind, id column, reference columns
and columns that must never be written.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from typing import Any, ClassVar

from gitpress.versioning.committer import NOT_PENDING, Committer
from gitpress.versioning.filesystem import LocalFileSystem, decode_text
from gitpress.versioning.identity import IdentityMap
from gitpress.versioning.models import ChangeInfo, Entity, FileMutation, Reference
from gitpress.versioning.serialization import deserialize, entity_path, serialize

logger = logging.getLogger(__name__)

STABLE_ID_FIELD = "vp_id"

_STABLE_ID_PATTERN = re.compile(r"[0-9A-F]{32}")
_EMPTY_REFERENCES = (None, "", 0, "0")


def is_stable_id(value: Any) -> bool:
    return isinstance(value, str) and bool(_STABLE_ID_PATTERN.fullmatch(value))


def normalize_stable_id(value: Any) -> str | None:
    """Return *value* as a canonical stable id, or ``None`` if it is not one."""
    if not isinstance(value, str):
        return None
    candidate = value.strip().upper()
    return candidate if is_stable_id(candidate) else None


def is_volatile_id(value: Any) -> bool:
    """Row ids are ints, or digit strings when they come from files or forms."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, str) and value.strip().isdigit()


class EntityStorage:
    """Serialize one entity kind to files in the working tree.

    Args:
        committer: The current request's committer.
        identity: Identity map shared by all storages.
        filesystem: Working tree adapter.
        storage_dir: Directory (relative to the repository root) that
            holds one sub-directory per kind.
    """

    kind: ClassVar[str] = ""
    id_field: ClassVar[str] = "id"
    reference_fields: ClassVar[dict[str, str]] = {}
    multi_valued_fields: ClassVar[frozenset[str]] = frozenset()
    ignored_fields: ClassVar[frozenset[str]] = frozenset()
    title_field: ClassVar[str | None] = None

    def __init__(
        self,
        committer: Committer,
        identity: IdentityMap,
        filesystem: LocalFileSystem,
        storage_dir: str = "db",
    ) -> None:
        self._committer = committer
        self._identity = identity
        self._fs = filesystem
        self._storage_dir = storage_dir

    # ------------------------------------------------------------------
    # Per-kind hooks
    # ------------------------------------------------------------------

    def reference_kind(self, name: str) -> str | None:
        """Entity kind referenced by field *name*, or ``None`` for plain fields."""
        return self.reference_fields.get(name)

    def is_multi_valued(self, name: str) -> bool:
        return name in self.multi_valued_fields

    def should_skip(self, fields: dict[str, Any]) -> bool:
        """Return ``True`` for rows this kind does not version."""
        return False

    def title_of(self, fields: dict[str, Any]) -> str | None:
        if self.title_field is None:
            return None
        value = fields.get(self.title_field)
        return str(value) if value not in (None, "") else None

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def path_for(self, stable_id: str) -> str:
        return entity_path(self._storage_dir, self.kind, stable_id)

    def identify(self, fields: dict[str, Any]) -> str | None:
        """Return the stable id of the entity described by *fields*.

        Returns ``None`` on an identity miss (unknown ``vp_id``).

        Raises:
            ValueError: If *fields* carries neither the id column nor
                ``vp_id``.
        """
        given = fields.get(STABLE_ID_FIELD)
        if given:
            stable_id = normalize_stable_id(given)
            if stable_id is not None and self._identity.is_known(self.kind, stable_id):
                return stable_id
            logger.debug(
                "Skipping %s save: unknown stable id %r", self.kind, given
            )
            return None

        volatile_id = fields.get(self.id_field)
        if volatile_id in (None, ""):
            raise ValueError(
                f"{self.kind} fields need '{self.id_field}' or '{STABLE_ID_FIELD}'"
            )
        return self._identity.resolve(self.kind, volatile_id)

    def stable_id_of(self, volatile_id: int | str) -> str | None:
        """Stable id of an existing row, without assigning one."""
        return self._identity.lookup(self.kind, volatile_id)

    # ------------------------------------------------------------------
    # Save / delete / load
    # ------------------------------------------------------------------

    def save(
        self,
        fields: dict[str, Any],
        change_info: ChangeInfo | None = None,
    ) -> str | None:
        """Register the new state of one entity.

        Args:
            fields: Host row values, possibly partial.
            change_info: Reason to record in the commit message.

        Returns:
            The entity's stable id, or ``None`` if the save was skipped.
        """
        if self.should_skip(fields):
            logger.debug("Not versioning %s row %s", self.kind, fields)
            return None
        stable_id = self.identify(fields)
        if stable_id is None:
            return None

        plain, references = self._split_fields(fields)
        # Unrepresentable values fail here rather than at commit.
        serialize(self._merge(None, stable_id, plain, references))

        def patch(current: bytes | None) -> bytes:
            entity = deserialize(decode_text(current)) if current is not None else None
            return serialize(self._merge(entity, stable_id, plain, references))

        self._committer.register_patch(self.path_for(stable_id), patch, change_info)
        logger.debug(
            "Registered %s %s (%d field(s), %d reference group(s))",
            self.kind,
            stable_id,
            len(plain),
            len(references),
        )
        return stable_id

    def delete(
        self, stable_id: str, change_info: ChangeInfo | None = None
    ) -> bool:
        """Register removal of the entity file.

        Returns:
            ``True`` if the entity existed (on disk or pending).
        """
        existed = self.load(stable_id) is not None
        mutation = FileMutation(path=self.path_for(stable_id), content=None)
        self._committer.register_change(mutation, change_info)
        return existed

    def delete_row(
        self, volatile_id: int | str, change_info: ChangeInfo | None = None
    ) -> str | None:
        """Delete the entity of a removed row and retire its volatile id.

        Returns:
            The retired stable id, or ``None`` if the engine never saw
            this row.
        """
        stable_id = self.stable_id_of(volatile_id)
        if stable_id is None:
            logger.debug(
                "Skipping %s delete: row %s was never versioned",
                self.kind,
                volatile_id,
            )
            return None
        self.delete(stable_id, change_info)
        self._identity.forget(self.kind, volatile_id)
        return stable_id

    def load(self, stable_id: str) -> Entity | None:
        """Current state of an entity, including this request's pending changes."""
        path = self.path_for(stable_id)
        pending = self._committer.pending_content(path)
        if pending is NOT_PENDING:
            text = self._fs.read_text(path)
            return deserialize(text) if text is not None else None
        if pending is None:
            return None
        return deserialize(pending)

    def to_row(self, entity: Entity) -> dict[str, Any]:
        """Map *entity* back to host column values.

        References whose stable ids no longer map to a row are skipped.
        """
        row: dict[str, Any] = dict(entity.fields)
        row[self.id_field] = self._identity.reverse_resolve(
            self.kind, entity.stable_id
        )
        row[STABLE_ID_FIELD] = entity.stable_id
        for name in entity.reference_names:
            volatile_ids = []
            for ref in entity.references:
                if ref.name != name:
                    continue
                volatile_id = self._identity.reverse_resolve(ref.kind, ref.stable_id)
                if volatile_id is not None:
                    volatile_ids.append(volatile_id)
            if self.is_multi_valued(name):
                row[name] = volatile_ids
            else:
                row[name] = volatile_ids[0] if volatile_ids else None
        return row

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _split_fields(
        self, fields: dict[str, Any]
    ) -> tuple[dict[str, Any], dict[str, list[Reference]]]:
        plain: dict[str, Any] = {}
        references: dict[str, list[Reference]] = {}
        for name, value in fields.items():
            if name in (self.id_field, STABLE_ID_FIELD) or name in self.ignored_fields:
                continue
            ref_kind = self.reference_kind(name)
            if ref_kind is None:
                plain[name] = value
            else:
                references[name] = self._resolve_references(name, ref_kind, value)
        return plain, references

    def _resolve_references(
        self, name: str, ref_kind: str, value: Any
    ) -> list[Reference]:
        if isinstance(value, (list, tuple, set, frozenset)):
            values: Iterable[Any] = value
        else:
            values = [value]

        resolved: list[Reference] = []
        for item in values:
            if isinstance(item, bool) or item in _EMPTY_REFERENCES:
                continue
            stable_id = normalize_stable_id(item)
            if stable_id is not None:
                if not self._identity.is_known(ref_kind, stable_id):
                    logger.debug(
                        "Dropping dangling reference %s -> %s %s",
                        name,
                        ref_kind,
                        stable_id,
                    )
                    continue
            elif is_volatile_id(item):
                stable_id = self._identity.resolve(ref_kind, str(item).strip())
            else:
                logger.warning(
                    "Dropping reference %s -> %s: %r is not a row id or stable id",
                    name,
                    ref_kind,
                    item,
                )
                continue
            resolved.append(Reference(name=name, kind=ref_kind, stable_id=stable_id))
        return resolved

    def _merge(
        self,
        current: Entity | None,
        stable_id: str,
        fields: dict[str, Any],
        references: dict[str, list[Reference]],
    ) -> Entity:
        merged_fields = dict(current.fields) if current else {}
        merged_fields.update(fields)
        merged_refs = [
            r for r in (current.references if current else ()) if r.name not in references
        ]
        for group in references.values():
            merged_refs.extend(group)
        return Entity(
            kind=self.kind,
            stable_id=stable_id,
            fields=merged_fields,
            references=tuple(merged_refs),
        )


# ---------------------------------------------------------------------------
# Concrete storages
# ---------------------------------------------------------------------------


class PostStorage(EntityStorage):
    """Posts, pages and custom post types, with their taxonomy terms.

    Each configured taxonomy (``category``, ``post_tag``...) is a
    multi-valued reference to ``terms``.
    """

    kind = "posts"
    id_field = "ID"
    reference_fields = {"post_author": "users", "post_parent": "posts"}
    ignored_fields = frozenset({"post_modified", "post_modified_gmt", "comment_count"})
    title_field = "post_title"

    _UNVERSIONED_TYPES = frozenset({"revision"})
    _UNVERSIONED_STATUSES = frozenset({"auto-draft"})

    def __init__(
        self,
        committer: Committer,
        identity: IdentityMap,
        filesystem: LocalFileSystem,
        storage_dir: str = "db",
        taxonomies: Iterable[str] = ("category", "post_tag"),
    ) -> None:
        super().__init__(committer, identity, filesystem, storage_dir)
        self.taxonomies = frozenset(taxonomies)

    def reference_kind(self, name: str) -> str | None:
        if name in self.taxonomies:
            return "terms"
        return super().reference_kind(name)

    def is_multi_valued(self, name: str) -> bool:
        return name in self.taxonomies

    def should_skip(self, fields: dict[str, Any]) -> bool:
        return (
            fields.get("post_type") in self._UNVERSIONED_TYPES
            or fields.get("post_status") in self._UNVERSIONED_STATUSES
        )


class TermStorage(EntityStorage):
    kind = "terms"
    id_field = "term_id"
    reference_fields = {"parent": "terms"}
    title_field = "name"


class CommentStorage(EntityStorage):
    kind = "comments"
    id_field = "comment_ID"
    reference_fields = {
        "comment_post_ID": "posts",
        "user_id": "users",
        "comment_parent": "comments",
    }


class UserStorage(EntityStorage):
    """Users.  Credentials are never written to the working tree."""

    kind = "users"
    id_field = "ID"
    ignored_fields = frozenset({"user_pass", "user_activation_key"})
    title_field = "user_login"


class OptionStorage(EntityStorage):
    """Site options, keyed by option name instead of a row id.

    The option name is already portable, so it is used directly as the
    file name and never goes through the identity map.  Transient options
    are caches and are not versioned.
    """

    kind = "options"
    id_field = "option_name"
    ignored_fields = frozenset({"option_id"})
    title_field = "option_name"

    _TRANSIENT_PREFIXES = ("_transient_", "_site_transient_")
    _SAFE_NAME = re.compile(r"[A-Za-z0-9_.\-]+")

    def should_skip(self, fields: dict[str, Any]) -> bool:
        name = str(fields.get(self.id_field) or fields.get(STABLE_ID_FIELD) or "")
        return name.startswith(self._TRANSIENT_PREFIXES)

    def identify(self, fields: dict[str, Any]) -> str | None:
        name = fields.get(self.id_field) or fields.get(STABLE_ID_FIELD)
        if not name:
            raise ValueError(f"options fields need '{self.id_field}'")
        name = str(name)
        if not self._SAFE_NAME.fullmatch(name) or name.startswith("."):
            logger.warning("Not versioning option with unsafe name %r", name)
            return None
        return name

    def stable_id_of(self, volatile_id: int | str) -> str | None:
        return str(volatile_id)

    def delete_row(
        self, volatile_id: int | str, change_info: ChangeInfo | None = None
    ) -> str | None:
        name = str(volatile_id)
        if self.load(name) is None:
            return None
        self.delete(name, change_info)
        return name

    def to_row(self, entity: Entity) -> dict[str, Any]:
        row = dict(entity.fields)
        row[self.id_field] = entity.stable_id
        return row


DEFAULT_STORAGES: tuple[type[EntityStorage], ...] = (
    PostStorage,
    TermStorage,
    CommentStorage,
    UserStorage,
    OptionStorage,
)

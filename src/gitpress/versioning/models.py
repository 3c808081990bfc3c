"""Pydantic models for the versioning engine.

Defines the data contracts shared by storage, committer and engine:

- ``Reference`` / ``Entity``: one serialized record and its links.
- ``ChangeAction`` / ``ChangeInfo``: why a batch of files changed.
- ``FileMutation``: one pending write or delete in the working tree.
- ``CommitResult``: what a successful flush recorded.
- ``EntityChanged`` / ``EntityDeleted`` / ``ActionOccurred``: the typed
  host events accepted by ``RequestSession.dispatch``.

All models are frozen (immutable).
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class Reference(BaseModel):
    """A link from an entity field to another entity, by stable id.

    Attributes:
        name: Field or relation name on the referencing entity
            (e.g. ``post_author``, ``category``).
        kind: Entity kind of the referenced record.
        stable_id: Stable id of the referenced record.
    """

    name: str
    kind: str
    stable_id: str

    model_config = {"frozen": True}

    def sort_key(self) -> tuple[str, str, str]:
        return (self.name, self.kind, self.stable_id)


class Entity(BaseModel):
    """One semantic record as stored in the working tree.

    ``references`` is normalised to a sorted tuple without duplicates so
    that equal logical states compare (and serialize) equal.
    """

    kind: str
    stable_id: str
    fields: dict[str, Any] = Field(default_factory=dict)
    references: tuple[Reference, ...] = ()

    model_config = {"frozen": True}

    @field_validator("references", mode="after")
    @classmethod
    def _normalise_references(
        cls, value: tuple[Reference, ...]
    ) -> tuple[Reference, ...]:
        return tuple(sorted(set(value), key=Reference.sort_key))

    def references_named(self, name: str) -> list[str]:
        """Stable ids referenced through *name*, in canonical order."""
        return [r.stable_id for r in self.references if r.name == name]

    @property
    def reference_names(self) -> list[str]:
        return sorted({r.name for r in self.references})


class ChangeAction(str, Enum):
    """Kinds of host actions that can appear in a commit message."""

    ENTITY_CREATED = "entity-created"
    ENTITY_SAVED = "entity-saved"
    ENTITY_DELETED = "entity-deleted"
    PLUGIN_ACTIVATED = "plugin-activated"
    PLUGIN_DEACTIVATED = "plugin-deactivated"
    PLUGIN_UPDATED = "plugin-updated"
    PLUGIN_INSTALLED = "plugin-installed"
    THEME_SWITCHED = "theme-switched"
    CORE_UPDATED = "core-updated"
    REVERTED = "reverted"
    CUSTOM = "custom"


_PLUGIN_VERBS = {
    ChangeAction.PLUGIN_ACTIVATED: "activate",
    ChangeAction.PLUGIN_DEACTIVATED: "deactivate",
    ChangeAction.PLUGIN_UPDATED: "update",
    ChangeAction.PLUGIN_INSTALLED: "install",
}

_ENTITY_VERBS = {
    ChangeAction.ENTITY_CREATED: "create",
    ChangeAction.ENTITY_SAVED: "save",
    ChangeAction.ENTITY_DELETED: "delete",
}


def _singular(kind: str) -> str:
    return kind[:-1] if kind.endswith("s") and len(kind) > 1 else kind


class ChangeInfo(BaseModel):
    """Description of the cause of a set of file changes.

    Carries no storage logic; it is only rendered into commit messages.

    Attributes:
        action: What happened.
        subject_kind: Entity kind or subject category (``posts``,
            ``plugin``, ``core``).
        subject_id: Stable id or name of the subject, when there is one.
        extra: Free-form values used when formatting the description
            (``title``, ``plugin``, ``version``, ``message``...).
    """

    action: ChangeAction
    subject_kind: str = ""
    subject_id: str | None = None
    extra: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}

    # ------------------------------------------------------------------
    # Constructors for the common cases
    # ------------------------------------------------------------------

    @classmethod
    def entity_saved(
        cls,
        kind: str,
        stable_id: str,
        title: str | None = None,
        created: bool = False,
    ) -> ChangeInfo:
        extra = {"title": title} if title else {}
        action = (
            ChangeAction.ENTITY_CREATED if created else ChangeAction.ENTITY_SAVED
        )
        return cls(
            action=action, subject_kind=kind, subject_id=stable_id, extra=extra
        )

    @classmethod
    def entity_deleted(cls, kind: str, stable_id: str) -> ChangeInfo:
        return cls(
            action=ChangeAction.ENTITY_DELETED,
            subject_kind=kind,
            subject_id=stable_id,
        )

    @classmethod
    def plugin(cls, action: ChangeAction, plugin_name: str) -> ChangeInfo:
        if action not in _PLUGIN_VERBS:
            raise ValueError(f"Not a plugin action: {action.value}")
        return cls(
            action=action,
            subject_kind="plugin",
            subject_id=plugin_name,
            extra={"plugin": plugin_name},
        )

    @classmethod
    def core_updated(cls, version: str) -> ChangeInfo:
        return cls(
            action=ChangeAction.CORE_UPDATED,
            subject_kind="core",
            subject_id=version,
            extra={"version": version},
        )

    @classmethod
    def reverted(cls, commit_id: str) -> ChangeInfo:
        return cls(
            action=ChangeAction.REVERTED,
            subject_kind="commit",
            subject_id=commit_id,
        )

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def describe(self) -> str:
        """Render a single human-readable line for a commit message."""
        subject = self.subject_id or ""
        match self.action:
            case ChangeAction.ENTITY_CREATED | ChangeAction.ENTITY_SAVED | ChangeAction.ENTITY_DELETED:
                verb = {
                    ChangeAction.ENTITY_CREATED: "Created",
                    ChangeAction.ENTITY_SAVED: "Saved",
                    ChangeAction.ENTITY_DELETED: "Deleted",
                }[self.action]
                noun = _singular(self.subject_kind) or "entity"
                title = self.extra.get("title")
                if title:
                    return f"{verb} {noun} '{title}' ({subject})"
                return f"{verb} {noun} {subject}".rstrip()
            case ChangeAction.PLUGIN_ACTIVATED:
                return f"Activated plugin '{self._plugin_name()}'"
            case ChangeAction.PLUGIN_DEACTIVATED:
                return f"Deactivated plugin '{self._plugin_name()}'"
            case ChangeAction.PLUGIN_UPDATED:
                return f"Updated plugin '{self._plugin_name()}'"
            case ChangeAction.PLUGIN_INSTALLED:
                return f"Installed plugin '{self._plugin_name()}'"
            case ChangeAction.THEME_SWITCHED:
                theme = self.extra.get("theme", subject)
                return f"Switched theme to '{theme}'"
            case ChangeAction.CORE_UPDATED:
                version = self.extra.get("version", subject)
                return f"Updated core to version {version}"
            case ChangeAction.REVERTED:
                return f"Reverted commit {subject[:12]}"
            case _:
                return self.extra.get("message") or "Custom change"

    def action_tag(self) -> str:
        """Machine-readable ``<subject>/<verb>/<id>`` tag for commit trailers."""
        if self.action in _ENTITY_VERBS:
            parts = [self.subject_kind, _ENTITY_VERBS[self.action]]
        elif self.action in _PLUGIN_VERBS:
            parts = ["plugin", _PLUGIN_VERBS[self.action]]
        elif self.action == ChangeAction.CORE_UPDATED:
            parts = ["core", "update"]
        elif self.action == ChangeAction.THEME_SWITCHED:
            parts = ["theme", "switch"]
        elif self.action == ChangeAction.REVERTED:
            parts = ["versionpress", "revert"]
        else:
            parts = [self.subject_kind or "custom", "change"]
        if self.subject_id:
            parts.append(self.subject_id)
        return "/".join(parts)

    def _plugin_name(self) -> str:
        return self.extra.get("plugin", self.subject_id or "")


class FileMutation(BaseModel):
    """A pending change to one file in the working tree.

    Attributes:
        path: POSIX path relative to the repository root.
        content: New file bytes, or ``None`` to delete the file.
    """

    path: str
    content: bytes | None = None

    model_config = {"frozen": True}

    @property
    def is_delete(self) -> bool:
        return self.content is None


class CommitResult(BaseModel):
    """Outcome of a successful ``Committer.commit()``."""

    commit_id: str
    message: str
    paths: tuple[str, ...] = ()
    change_count: int = 0

    model_config = {"frozen": True}

    @property
    def headline(self) -> str:
        return self.message.split("\n", 1)[0]


# ---------------------------------------------------------------------------
# Host events
# ---------------------------------------------------------------------------


class EntityChanged(BaseModel):
    """A row of *kind* was inserted or updated by the host."""

    kind: str
    volatile_id: int | str
    fields: dict[str, Any] = Field(default_factory=dict)
    change_info: ChangeInfo | None = None

    model_config = {"frozen": True}


class EntityDeleted(BaseModel):
    """A row of *kind* was deleted by the host."""

    kind: str
    volatile_id: int | str
    change_info: ChangeInfo | None = None

    model_config = {"frozen": True}


class ActionOccurred(BaseModel):
    """A host-level action that describes the whole request's changes."""

    action: ChangeAction
    details: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}

    def to_change_info(self) -> ChangeInfo:
        subject_kind = self.details.get("subject_kind", "")
        subject_id = self.details.get("subject_id")
        if self.action in _PLUGIN_VERBS and "plugin" in self.details:
            subject_kind = subject_kind or "plugin"
            subject_id = subject_id or self.details["plugin"]
        elif self.action == ChangeAction.CORE_UPDATED and "version" in self.details:
            subject_kind = subject_kind or "core"
            subject_id = subject_id or self.details["version"]
        extra = {
            k: v
            for k, v in self.details.items()
            if k not in ("subject_kind", "subject_id")
        }
        return ChangeInfo(
            action=self.action,
            subject_kind=subject_kind,
            subject_id=subject_id,
            extra=extra,
        )


HostEvent = EntityChanged | EntityDeleted | ActionOccurred

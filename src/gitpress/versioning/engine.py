"""Versioning engine and per-request sessions.

The host talks to gitpress through two objects:

* ``VersioningEngine`` -- created once per process.  Owns everything
  shared between requests: configuration, identity map, git backend,
  working tree adapter and the commit lock.
* ``RequestSession`` -- created per request by ``engine.request()``.
  Owns the request's ``Committer`` and ``StorageFactory`` and accepts
  typed host events through ``dispatch()``.

Typical host glue::

    engine = VersioningEngine(load_config())

    with engine.request() as session:
        session.notify_entity_changed("posts", 12, {"post_title": "Hello"})
        session.notify_entity_changed("posts", 12, {"category": [3]})
        session.notify_action(ChangeAction.PLUGIN_ACTIVATED, {"plugin": "akismet"})
    # teardown: exactly one commit (or none if nothing changed)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

from gitpress.config_schema import UnifiedConfig
from gitpress.errors import GitPressError
from gitpress.versioning.backend import CommitRecord, GitBackend
from gitpress.versioning.committer import Committer
from gitpress.versioning.factory import StorageFactory
from gitpress.versioning.filesystem import LocalFileSystem
from gitpress.versioning.identity import (
    IdentityMap,
    IdentityStore,
    InMemoryIdentityStore,
    SQLiteIdentityStore,
)
from gitpress.versioning.lock import LockFactory
from gitpress.versioning.messages import render_commit_message
from gitpress.versioning.models import (
    ActionOccurred,
    ChangeAction,
    ChangeInfo,
    CommitResult,
    EntityChanged,
    EntityDeleted,
    HostEvent,
)
from gitpress.versioning.storage import DEFAULT_STORAGES, EntityStorage

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = "gitpress-commit.lock"


class RequestSession:
    """Everything one request needs: a committer and its storages."""

    def __init__(self, committer: Committer, storages: StorageFactory) -> None:
        self.committer = committer
        self.storages = storages

    # ------------------------------------------------------------------
    # Typed entry point
    # ------------------------------------------------------------------

    def dispatch(self, event: HostEvent) -> str | None:
        """Apply one host event.

        Returns:
            The affected stable id for entity events (``None`` when the
            event was skipped), ``None`` for actions.

        Raises:
            UnknownEntityKindError: The event names an unregistered kind.
        """
        match event:
            case EntityChanged():
                return self._entity_changed(event)
            case EntityDeleted():
                return self._entity_deleted(event)
            case ActionOccurred():
                self.committer.force_change_info(event.to_change_info())
                return None
            case _:
                raise TypeError(f"Unsupported host event: {type(event).__name__}")

    def notify_entity_changed(
        self,
        kind: str,
        volatile_id: int | str,
        fields: dict[str, Any] | None = None,
        change_info: ChangeInfo | None = None,
    ) -> str | None:
        return self.dispatch(
            EntityChanged(
                kind=kind,
                volatile_id=volatile_id,
                fields=fields or {},
                change_info=change_info,
            )
        )

    def notify_entity_deleted(
        self,
        kind: str,
        volatile_id: int | str,
        change_info: ChangeInfo | None = None,
    ) -> str | None:
        return self.dispatch(
            EntityDeleted(kind=kind, volatile_id=volatile_id, change_info=change_info)
        )

    def notify_action(
        self, action: ChangeAction | str, details: dict[str, str] | None = None
    ) -> None:
        self.dispatch(ActionOccurred(action=ChangeAction(action), details=details or {}))

    def commit(self) -> CommitResult | None:
        return self.committer.commit()

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _entity_changed(self, event: EntityChanged) -> str | None:
        storage = self.storages.get_storage(event.kind)
        fields = {**event.fields, storage.id_field: event.volatile_id}
        if storage.should_skip(fields):
            logger.debug("Skipping unversioned %s #%s", event.kind, event.volatile_id)
            return None

        change_info = event.change_info
        if change_info is None:
            stable_id = storage.identify(fields)
            if stable_id is None:
                return None
            change_info = self._saved_info(storage, stable_id, fields)
        return storage.save(fields, change_info)

    def _entity_deleted(self, event: EntityDeleted) -> str | None:
        storage = self.storages.get_storage(event.kind)
        change_info = event.change_info
        if change_info is None:
            stable_id = storage.stable_id_of(event.volatile_id)
            if stable_id is None:
                logger.debug(
                    "Ignoring delete of unversioned %s #%s",
                    event.kind,
                    event.volatile_id,
                )
                return None
            change_info = ChangeInfo.entity_deleted(event.kind, stable_id)
        return storage.delete_row(event.volatile_id, change_info)

    @staticmethod
    def _saved_info(
        storage: EntityStorage, stable_id: str, fields: dict[str, Any]
    ) -> ChangeInfo:
        current = storage.load(stable_id)
        title = storage.title_of(fields)
        if title is None and current is not None:
            title = storage.title_of(current.fields)
        return ChangeInfo.entity_saved(
            storage.kind, stable_id, title=title, created=current is None
        )


class VersioningEngine:
    """Process-wide owner of the shared versioning resources.

    Args:
        config: Configuration; defaults to ``UnifiedConfig()``.
        identity_store: Identity backing store; built from
            ``config.identity`` when omitted.
        backend: Git backend; built from the config when omitted.
        filesystem: Working tree adapter; built from the config when
            omitted.
        storage_classes: Storage classes registered for every request.
    """

    def __init__(
        self,
        config: UnifiedConfig | None = None,
        identity_store: IdentityStore | None = None,
        backend: GitBackend | None = None,
        filesystem: LocalFileSystem | None = None,
        storage_classes: Iterable[type[EntityStorage]] = DEFAULT_STORAGES,
    ) -> None:
        self.config = config or UnifiedConfig()
        repository = self.config.repository_path
        commit_cfg = self.config.commit

        self.backend = backend or GitBackend(
            repository,
            author_name=commit_cfg.author_name,
            author_email=commit_cfg.author_email,
            timeout=commit_cfg.git_timeout,
        )
        self.backend.ensure_repository()
        self.filesystem = filesystem or LocalFileSystem(repository)
        self.identity = IdentityMap(identity_store or self._build_identity_store())
        self.lock_factory = LockFactory(
            self.backend.git_dir / LOCK_FILE_NAME,
            timeout=commit_cfg.lock_timeout,
            poll_interval=commit_cfg.poll_interval,
        )
        self._storage_classes = tuple(storage_classes)

    def _build_identity_store(self) -> IdentityStore:
        if self.config.identity.backend == "memory":
            return InMemoryIdentityStore()
        return SQLiteIdentityStore(self.config.identity_path)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def open_request(self) -> RequestSession:
        """Create a session; the caller must call ``commit()`` at teardown."""
        committer = Committer(self.backend, self.filesystem, self.lock_factory)
        storages = StorageFactory(
            committer,
            self.identity,
            self.filesystem,
            storage_dir=self.config.storage.storage_dir,
            taxonomies=self.config.storage.taxonomies,
            storage_classes=self._storage_classes,
        )
        return RequestSession(committer, storages)

    @contextmanager
    def request(self) -> Iterator[RequestSession]:
        """Request scope whose teardown commits exactly once.

        Changes registered before a failure in the request body are still
        committed: they mirror database writes that already happened.  If
        that commit fails too, the failure is logged and the body's
        exception is the one that propagates.
        """
        session = self.open_request()
        try:
            yield session
        except BaseException:
            logger.warning(
                "Request failed; committing the changes it registered"
            )
            try:
                session.commit()
            except GitPressError:
                logger.exception("Commit after a failed request also failed")
            raise
        session.commit()

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def history(self, limit: int | None = None) -> list[CommitRecord]:
        return self.backend.history(limit)

    def revert(self, commit_id: str) -> str:
        """Revert *commit_id* under the commit lock; returns the new commit id."""
        message = render_commit_message([ChangeInfo.reverted(commit_id)])
        with self.lock_factory():
            return self.backend.revert(commit_id, message=message)

"""Registry resolving entity-kind names to storages for one request."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from gitpress.errors import UnknownEntityKindError
from gitpress.versioning.committer import Committer
from gitpress.versioning.filesystem import LocalFileSystem
from gitpress.versioning.identity import IdentityMap
from gitpress.versioning.storage import DEFAULT_STORAGES, EntityStorage, PostStorage

logger = logging.getLogger(__name__)


class StorageFactory:
    """Fixed ``kind -> EntityStorage`` registry built at request start.

    Args:
        committer: The request's committer, shared by every storage.
        identity: Process-wide identity map.
        filesystem: Working tree adapter.
        storage_dir: Entity directory relative to the repository root.
        taxonomies: Taxonomies versioned as post references.
        storage_classes: Storage classes to register; defaults to all
            built-in kinds.
    """

    def __init__(
        self,
        committer: Committer,
        identity: IdentityMap,
        filesystem: LocalFileSystem,
        storage_dir: str = "db",
        taxonomies: Iterable[str] = ("category", "post_tag"),
        storage_classes: Iterable[type[EntityStorage]] = DEFAULT_STORAGES,
    ) -> None:
        self._storages: dict[str, EntityStorage] = {}
        for cls in storage_classes:
            if issubclass(cls, PostStorage):
                storage: EntityStorage = cls(
                    committer, identity, filesystem, storage_dir, taxonomies=taxonomies
                )
            else:
                storage = cls(committer, identity, filesystem, storage_dir)
            if storage.kind in self._storages:
                raise ValueError(f"Duplicate storage for kind '{storage.kind}'")
            self._storages[storage.kind] = storage

    @property
    def kinds(self) -> list[str]:
        return list(self._storages)

    def get_storage(self, kind: str) -> EntityStorage:
        """Return the storage for *kind*.

        Raises:
            UnknownEntityKindError: No storage is registered for *kind*.
        """
        try:
            return self._storages[kind]
        except KeyError:
            logger.error("No storage registered for entity kind '%s'", kind)
            raise UnknownEntityKindError(kind, self.kinds) from None

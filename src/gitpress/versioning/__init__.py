"""Database-to-git versioning engine.

Mirrors content entities (posts, terms, comments, users, options) into
canonical YAML files in a git working tree, producing exactly one commit
per host request.

Architecture
------------
- ``identity``      -- ``IdentityMap``: volatile row id <-> stable id,
  over an ``InMemoryIdentityStore`` or ``SQLiteIdentityStore``.
- ``serialization`` -- canonical entity file encoding.
- ``storage``       -- ``EntityStorage`` and one subclass per kind.
- ``factory``       -- ``StorageFactory``: kind name -> storage.
- ``models``        -- ``Entity``, ``ChangeInfo``, ``FileMutation``,
  host events.
- ``messages``      -- commit message rendering.
- ``committer``     -- ``Committer``: request-scoped batching and the
  single atomic commit.
- ``lock``          -- ``CommitLock``: cross-request commit exclusion.
- ``filesystem``    -- ``LocalFileSystem``: working tree adapter.
- ``backend``       -- ``GitBackend``: git subprocess wrapper.
- ``engine``        -- ``VersioningEngine`` / ``RequestSession``.
"""

from .backend import CommitRecord, GitBackend
from .committer import NOT_PENDING, Committer, CommitterState
from .engine import RequestSession, VersioningEngine
from .factory import StorageFactory
from .filesystem import LocalFileSystem
from .identity import (
    IdentityMap,
    IdentityStore,
    InMemoryIdentityStore,
    SQLiteIdentityStore,
)
from .lock import CommitLock
from .messages import render_commit_message
from .models import (
    ActionOccurred,
    ChangeAction,
    ChangeInfo,
    CommitResult,
    Entity,
    EntityChanged,
    EntityDeleted,
    FileMutation,
    Reference,
)
from .storage import (
    CommentStorage,
    EntityStorage,
    OptionStorage,
    PostStorage,
    TermStorage,
    UserStorage,
)

__all__ = [
    "NOT_PENDING",
    "ActionOccurred",
    "ChangeAction",
    "ChangeInfo",
    "CommentStorage",
    "CommitLock",
    "CommitRecord",
    "CommitResult",
    "Committer",
    "CommitterState",
    "Entity",
    "EntityChanged",
    "EntityDeleted",
    "EntityStorage",
    "FileMutation",
    "GitBackend",
    "IdentityMap",
    "IdentityStore",
    "InMemoryIdentityStore",
    "LocalFileSystem",
    "OptionStorage",
    "PostStorage",
    "Reference",
    "RequestSession",
    "SQLiteIdentityStore",
    "StorageFactory",
    "TermStorage",
    "UserStorage",
    "VersioningEngine",
    "render_commit_message",
]

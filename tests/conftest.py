"""Shared pytest fixtures for gitpress tests."""

import shutil

import pytest

from gitpress.config_schema import UnifiedConfig, build_config
from gitpress.versioning.backend import GitBackend
from gitpress.versioning.committer import Committer
from gitpress.versioning.engine import VersioningEngine
from gitpress.versioning.factory import StorageFactory
from gitpress.versioning.filesystem import LocalFileSystem
from gitpress.versioning.identity import IdentityMap, InMemoryIdentityStore
from gitpress.versioning.lock import LockFactory

HAS_GIT = shutil.which("git") is not None


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "git: test drives a real git executable"
    )


def pytest_collection_modifyitems(config, items):
    """Skip git tests when no git executable is available."""
    if HAS_GIT:
        return
    skip_git = pytest.mark.skip(reason="git executable not found")
    for item in items:
        if "git" in item.keywords:
            item.add_marker(skip_git)


@pytest.fixture
def repo_dir(tmp_path):
    """Empty directory used as the repository root."""
    path = tmp_path / "site"
    path.mkdir()
    return path


@pytest.fixture
def backend(repo_dir):
    """Git backend over a freshly initialised repository."""
    git = GitBackend(repo_dir, author_name="Test", author_email="test@example.com")
    git.ensure_repository()
    return git


@pytest.fixture
def filesystem(repo_dir):
    return LocalFileSystem(repo_dir)


@pytest.fixture
def identity():
    return IdentityMap(InMemoryIdentityStore())


@pytest.fixture
def lock_factory(backend):
    return LockFactory(
        backend.git_dir / "gitpress-commit.lock", timeout=2.0, poll_interval=0.01
    )


@pytest.fixture
def make_committer(backend, filesystem, lock_factory):
    """Factory fixture: one committer per simulated request."""

    def _make() -> Committer:
        return Committer(backend, filesystem, lock_factory)

    return _make


@pytest.fixture
def committer(make_committer):
    return make_committer()


@pytest.fixture
def storages(committer, identity, filesystem):
    return StorageFactory(committer, identity, filesystem, storage_dir="db")


@pytest.fixture
def config(repo_dir) -> UnifiedConfig:
    return build_config(
        {
            "storage": {"repository": str(repo_dir)},
            "identity": {"backend": "memory"},
            "commit": {
                "lock_timeout": 2,
                "poll_interval": 0.01,
                "author_name": "Test",
                "author_email": "test@example.com",
            },
        }
    )


@pytest.fixture
def engine(config) -> VersioningEngine:
    return VersioningEngine(config)

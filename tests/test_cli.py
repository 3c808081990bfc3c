"""Tests for the gitpress command-line tools."""

from unittest.mock import patch

import pytest

from gitpress import __version__
from gitpress.cli import build_parser, run
from gitpress.config_schema import build_config
from gitpress.versioning.engine import VersioningEngine


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    """Keep config discovery, .env lookup and logging inside tmp_path."""
    for name in (
        "GITPRESS_CONFIG",
        "GITPRESS_REPOSITORY",
        "GITPRESS_STORAGE_DIR",
        "GITPRESS_IDENTITY_DB",
        "GITPRESS_LOCK_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    with patch("gitpress.cli.setup_logging"):
        yield tmp_path


def _seed(repo_dir) -> str:
    engine = VersioningEngine(
        build_config(
            {
                "storage": {"repository": str(repo_dir)},
                "commit": {"author_name": "Test", "author_email": "t@example.com"},
            }
        )
    )
    with engine.request() as session:
        session.notify_entity_changed("posts", 1, {"post_title": "Hello"})
    return engine.history()[0].commit_id


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["--version"])
        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_log_options(self):
        args = build_parser().parse_args(["log", "-n", "5", "--actions"])
        assert args.limit == 5
        assert args.actions is True


@pytest.mark.git
class TestCommands:
    def test_init(self, isolated, capsys):
        repo = isolated / "site"
        assert run(["--repository", str(repo), "init"]) == 0

        out = capsys.readouterr().out
        assert "Commits:    0" in out
        assert (repo / ".git").is_dir()
        assert (isolated / ".gitpress" / "config.yml").exists()

    def test_log_empty(self, isolated, capsys):
        assert run(["--repository", str(isolated / "site"), "log"]) == 0
        assert "No commits yet." in capsys.readouterr().out

    def test_log_with_actions(self, isolated, capsys):
        repo = isolated / "site"
        commit_id = _seed(repo)

        assert run(["--repository", str(repo), "log", "--actions"]) == 0

        out = capsys.readouterr().out
        assert commit_id[:12] in out
        assert "Created post 'Hello'" in out
        assert "posts/create/" in out

    def test_show(self, isolated, capsys):
        repo = isolated / "site"
        commit_id = _seed(repo)

        assert run(["--repository", str(repo), "show", commit_id]) == 0

        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 1
        assert lines[0].startswith("db/posts/")

    def test_revert(self, isolated, capsys):
        repo = isolated / "site"
        commit_id = _seed(repo)

        assert run(["--repository", str(repo), "revert", commit_id]) == 0

        assert f"Reverted {commit_id[:12]}" in capsys.readouterr().out
        assert not list(repo.glob("db/**/*.yml"))

    def test_errors_are_reported(self, isolated, capsys):
        repo = isolated / "site"
        _seed(repo)

        assert run(["--repository", str(repo), "show", "not-a-commit"]) == 1
        assert "ERROR:" in capsys.readouterr().err

    def test_invalid_env_value(self, isolated, capsys, monkeypatch):
        monkeypatch.setenv("GITPRESS_LOCK_TIMEOUT", "forever")
        assert run(["--repository", str(isolated / "site"), "log"]) == 1
        assert "GITPRESS_LOCK_TIMEOUT" in capsys.readouterr().err

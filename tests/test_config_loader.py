"""Tests for gitpress.config_loader: hierarchical config loading."""

import textwrap

import pytest
import yaml

from gitpress.config_loader import (
    _interpolate_recursive,
    discover_config_files,
    ensure_config,
    interpolate_env_vars,
    load_hierarchical_config,
)


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """CWD and HOME inside tmp_path, no GITPRESS_CONFIG."""
    monkeypatch.delenv("GITPRESS_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    return tmp_path


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text))
    return path


# -------------------------------------------------------------------------
# Env var interpolation
# -------------------------------------------------------------------------


class TestInterpolateEnvVars:
    """Tests for ${VAR} and ${VAR:-default} substitution."""

    def test_replaces_set_var(self, monkeypatch):
        monkeypatch.setenv("SITE_ROOT", "/srv/site")
        assert interpolate_env_vars("${SITE_ROOT}") == "/srv/site"

    def test_unset_var_replaced_with_empty(self, monkeypatch):
        monkeypatch.delenv("UNSET_VAR_XYZ", raising=False)
        assert interpolate_env_vars("${UNSET_VAR_XYZ}") == ""

    def test_default_used_when_unset_or_empty(self, monkeypatch):
        monkeypatch.delenv("UNSET_VAR_XYZ", raising=False)
        monkeypatch.setenv("EMPTY_VAR", "")
        assert interpolate_env_vars("${UNSET_VAR_XYZ:-db}") == "db"
        assert interpolate_env_vars("${EMPTY_VAR:-db}") == "db"

    def test_nested_structures(self, monkeypatch):
        monkeypatch.setenv("AUTHOR", "Editor")
        data = {"commit": {"author_name": "${AUTHOR}", "lock_timeout": 5}, "x": ["${AUTHOR}", 1]}
        assert _interpolate_recursive(data) == {
            "commit": {"author_name": "Editor", "lock_timeout": 5},
            "x": ["Editor", 1],
        }

    def test_literal_dollar_brace_no_closing(self):
        assert interpolate_env_vars("${NO_CLOSE") == "${NO_CLOSE"


# -------------------------------------------------------------------------
# Convention-based file discovery
# -------------------------------------------------------------------------


class TestDiscoverConfigFiles:
    def test_no_files(self, isolated):
        assert discover_config_files() == []

    def test_precedence_order(self, isolated, monkeypatch):
        explicit = _write(isolated / "custom.yml", "a: 1\n")
        project = _write(isolated / ".gitpress" / "config.yml", "b: 1\n")
        global_cfg = _write(
            isolated / "home" / ".config" / "gitpress" / "config.yml", "c: 1\n"
        )
        monkeypatch.setenv("GITPRESS_CONFIG", str(explicit))

        assert [p.resolve() for p in discover_config_files()] == [
            explicit.resolve(),
            project.resolve(),
            global_cfg.resolve(),
        ]

    def test_missing_explicit_file_skipped(self, isolated, monkeypatch):
        monkeypatch.setenv("GITPRESS_CONFIG", str(isolated / "missing.yml"))
        assert discover_config_files() == []


# -------------------------------------------------------------------------
# Hierarchical merge
# -------------------------------------------------------------------------


class TestLoadHierarchicalConfig:
    def test_zero_config_returns_empty_dict(self, isolated):
        assert load_hierarchical_config() == {}

    def test_project_overrides_global_at_section_level(self, isolated):
        _write(
            isolated / "home" / ".config" / "gitpress" / "config.yml",
            """\
            storage:
              storage_dir: global
              taxonomies: [category]
            commit:
              author_name: Global
            """,
        )
        _write(
            isolated / ".gitpress" / "config.yml",
            """\
            storage:
              storage_dir: project
            """,
        )

        result = load_hierarchical_config()
        assert result["storage"] == {"storage_dir": "project"}
        assert result["commit"]["author_name"] == "Global"

    def test_env_var_interpolation_after_merge(self, isolated, monkeypatch):
        monkeypatch.setenv("SITE_AUTHOR", "Robot")
        _write(
            isolated / ".gitpress" / "config.yml",
            """\
            commit:
              author_name: "${SITE_AUTHOR}"
            """,
        )
        assert load_hierarchical_config()["commit"]["author_name"] == "Robot"

    def test_non_dict_root_skipped(self, isolated, monkeypatch):
        bad = _write(isolated / "bad.yml", "- item1\n- item2\n")
        monkeypatch.setenv("GITPRESS_CONFIG", str(bad))
        assert load_hierarchical_config() == {}

    def test_invalid_yaml_raises(self, isolated):
        _write(isolated / ".gitpress" / "config.yml", "storage: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_hierarchical_config()


# -------------------------------------------------------------------------
# Starter config
# -------------------------------------------------------------------------


class TestEnsureConfig:
    def test_creates_starter_file(self, isolated):
        path = ensure_config()
        assert path.resolve() == (isolated / ".gitpress" / "config.yml").resolve()
        assert "gitpress configuration" in path.read_text()
        # Every setting in the starter file is commented out.
        assert load_hierarchical_config() == {}

    def test_existing_config_returned(self, isolated):
        existing = _write(isolated / ".gitpress" / "config.yml", "storage: {}\n")
        assert ensure_config().resolve() == existing.resolve()
        assert existing.read_text() == "storage: {}\n"

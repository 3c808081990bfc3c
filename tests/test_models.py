"""Tests for versioning data models and change descriptions."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from gitpress.versioning.models import (
    ActionOccurred,
    ChangeAction,
    ChangeInfo,
    CommitResult,
    Entity,
    FileMutation,
    Reference,
)

SID = "ABCDEF0123456789ABCDEF0123456789"


class TestEntity:
    def test_references_are_sorted_and_unique(self):
        b = Reference(name="category", kind="terms", stable_id="B" * 32)
        a = Reference(name="category", kind="terms", stable_id="A" * 32)
        entity = Entity(kind="posts", stable_id=SID, references=(b, a, b))
        assert entity.references == (a, b)

    def test_references_named(self):
        entity = Entity(
            kind="posts",
            stable_id=SID,
            references=(
                Reference(name="post_tag", kind="terms", stable_id="B" * 32),
                Reference(name="category", kind="terms", stable_id="A" * 32),
            ),
        )
        assert entity.references_named("category") == ["A" * 32]
        assert entity.reference_names == ["category", "post_tag"]

    def test_entity_is_frozen(self):
        entity = Entity(kind="posts", stable_id=SID)
        with pytest.raises(ValidationError):
            entity.kind = "terms"  # type: ignore[misc]


class TestChangeInfoDescribe:
    def test_saved_with_title(self):
        info = ChangeInfo.entity_saved("posts", SID, title="Hello")
        assert info.describe() == f"Saved post 'Hello' ({SID})"

    def test_saved_without_title(self):
        assert ChangeInfo.entity_saved("terms", SID).describe() == f"Saved term {SID}"

    def test_created(self):
        info = ChangeInfo.entity_saved("posts", SID, title="Hi", created=True)
        assert info.action == ChangeAction.ENTITY_CREATED
        assert info.describe().startswith("Created post 'Hi'")

    def test_deleted(self):
        assert ChangeInfo.entity_deleted("comments", SID).describe() == (
            f"Deleted comment {SID}"
        )

    @pytest.mark.parametrize(
        ("action", "expected"),
        [
            (ChangeAction.PLUGIN_ACTIVATED, "Activated plugin 'akismet/akismet.php'"),
            (ChangeAction.PLUGIN_DEACTIVATED, "Deactivated plugin 'akismet/akismet.php'"),
            (ChangeAction.PLUGIN_UPDATED, "Updated plugin 'akismet/akismet.php'"),
            (ChangeAction.PLUGIN_INSTALLED, "Installed plugin 'akismet/akismet.php'"),
        ],
    )
    def test_plugin_actions(self, action, expected):
        assert ChangeInfo.plugin(action, "akismet/akismet.php").describe() == expected

    def test_plugin_rejects_non_plugin_action(self):
        with pytest.raises(ValueError):
            ChangeInfo.plugin(ChangeAction.CORE_UPDATED, "x")

    def test_core_updated(self):
        assert ChangeInfo.core_updated("6.4.2").describe() == (
            "Updated core to version 6.4.2"
        )

    def test_custom_message(self):
        info = ChangeInfo(action=ChangeAction.CUSTOM, extra={"message": "Imported"})
        assert info.describe() == "Imported"

    def test_theme_switched(self):
        info = ChangeInfo(action=ChangeAction.THEME_SWITCHED, extra={"theme": "twentyten"})
        assert info.describe() == "Switched theme to 'twentyten'"


class TestActionTag:
    def test_entity_tag(self):
        assert ChangeInfo.entity_saved("posts", SID).action_tag() == f"posts/save/{SID}"

    def test_plugin_tag(self):
        info = ChangeInfo.plugin(ChangeAction.PLUGIN_ACTIVATED, "hello.php")
        assert info.action_tag() == "plugin/activate/hello.php"

    def test_core_tag(self):
        assert ChangeInfo.core_updated("6.4").action_tag() == "core/update/6.4"


class TestActionOccurred:
    def test_plugin_details_become_subject(self):
        event = ActionOccurred(
            action=ChangeAction.PLUGIN_ACTIVATED, details={"plugin": "hello.php"}
        )
        info = event.to_change_info()
        assert info.subject_kind == "plugin"
        assert info.subject_id == "hello.php"
        assert info.describe() == "Activated plugin 'hello.php'"

    def test_core_version_becomes_subject(self):
        event = ActionOccurred(
            action=ChangeAction.CORE_UPDATED, details={"version": "6.5"}
        )
        assert event.to_change_info().action_tag() == "core/update/6.5"

    def test_action_from_string_value(self):
        event = ActionOccurred(action="plugin-updated", details={"plugin": "x"})
        assert event.action is ChangeAction.PLUGIN_UPDATED


class TestFileMutationAndResult:
    def test_delete_mutation(self):
        assert FileMutation(path="db/posts/X.yml").is_delete
        assert not FileMutation(path="db/posts/X.yml", content=b"").is_delete

    def test_commit_result_headline(self):
        result = CommitResult(commit_id="abc", message="First\n\nSecond")
        assert result.headline == "First"

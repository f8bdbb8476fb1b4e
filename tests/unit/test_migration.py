"""
Unit tests for session document migration.

Tests cover:
- Moving a legacy global selection onto the last opened workspace
- Dropping it when there is no (existing) last opened workspace
- Defaulting per-workspace selection fields
- Idempotence and tolerance of unrecognized shapes
"""

import copy

from worktree_session.migration import migrate_document
from worktree_session.models import CURRENT_SCHEMA_VERSION, SessionDocument


def _workspace(workspace_id, **extra):
    workspace = {"id": workspace_id, "name": workspace_id, "repoPath": f"/src/{workspace_id}", "branch": "main"}
    workspace.update(extra)
    return workspace


class TestLegacySelection:
    """Test version 1 global selection handling."""

    def test_selection_moved_to_last_opened_workspace(self):
        """Test the global triple lands on the last opened workspace."""
        raw = {
            "workspaces": [
                _workspace("w1", activeWorktreeId=None, activeTabGroupId=None, activeTabId=None),
                _workspace("w2"),
            ],
            "activeWorktreeId": "wt1",
            "activeTabGroupId": "tg1",
            "activeTabId": None,
            "lastOpenedWorkspaceId": "w1",
        }

        migrated = migrate_document(raw)

        for key in ("activeWorktreeId", "activeTabGroupId", "activeTabId"):
            assert key not in migrated
        w1 = migrated["workspaces"][0]
        assert (w1["activeWorktreeId"], w1["activeTabGroupId"], w1["activeTabId"]) == ("wt1", "tg1", None)
        w2 = migrated["workspaces"][1]
        assert (w2["activeWorktreeId"], w2["activeTabGroupId"], w2["activeTabId"]) == (None, None, None)
        assert migrated["lastOpenedWorkspaceId"] == "w1"

    def test_selection_overwrites_workspace_triple(self):
        """Test the legacy triple replaces the workspace's own selection."""
        raw = {
            "workspaces": [_workspace("w1", activeWorktreeId="old", activeTabGroupId="old", activeTabId="old")],
            "activeWorktreeId": "wt1",
            "lastOpenedWorkspaceId": "w1",
        }

        w1 = migrate_document(raw)["workspaces"][0]

        assert (w1["activeWorktreeId"], w1["activeTabGroupId"], w1["activeTabId"]) == ("wt1", None, None)

    def test_selection_dropped_without_last_opened(self):
        """Test legacy fields are removed and applied nowhere."""
        raw = {
            "workspaces": [_workspace("w1")],
            "activeWorktreeId": "wt1",
            "activeTabGroupId": "tg1",
            "activeTabId": "t1",
        }

        migrated = migrate_document(raw)

        assert "activeWorktreeId" not in migrated
        assert migrated["workspaces"][0]["activeWorktreeId"] is None
        assert migrated["lastOpenedWorkspaceId"] is None

    def test_selection_dropped_when_last_opened_missing(self):
        """Test a dangling lastOpenedWorkspaceId drops the selection and is cleared."""
        raw = {
            "workspaces": [_workspace("w1")],
            "activeWorktreeId": "wt1",
            "lastOpenedWorkspaceId": "gone",
            "activeWorkspaceId": "gone",
        }

        migrated = migrate_document(raw)

        assert "activeWorktreeId" not in migrated
        assert migrated["workspaces"][0]["activeWorktreeId"] is None
        assert migrated["lastOpenedWorkspaceId"] is None
        assert migrated["activeWorkspaceId"] is None


class TestCanonicalShape:
    """Test defaults and idempotence."""

    def test_missing_fields_defaulted(self):
        """Test an old document gains every field of the current shape."""
        migrated = migrate_document({"workspaces": [_workspace("w1")]})

        assert migrated["version"] == CURRENT_SCHEMA_VERSION
        assert migrated["lastOpenedWorkspaceId"] is None
        assert migrated["activeWorkspaceId"] is None
        assert migrated["workspaces"][0]["activeTabId"] is None

    def test_empty_object(self):
        """Test an empty object becomes an empty current document."""
        migrated = migrate_document({})
        assert migrated["workspaces"] == []
        assert migrated["version"] == CURRENT_SCHEMA_VERSION

    def test_idempotent(self):
        """Test migrating twice equals migrating once."""
        raw = {
            "workspaces": [_workspace("w1"), _workspace("w2", activeTabId="t9")],
            "activeWorktreeId": "wt1",
            "activeTabGroupId": "tg1",
            "lastOpenedWorkspaceId": "w1",
        }

        once = migrate_document(raw)
        twice = migrate_document(once)

        assert twice == once

    def test_input_not_mutated(self):
        """Test the caller's dictionary is left untouched."""
        raw = {"workspaces": [_workspace("w1")], "activeWorktreeId": "wt1", "lastOpenedWorkspaceId": "w1"}
        original = copy.deepcopy(raw)

        migrate_document(raw)

        assert raw == original

    def test_unrecognized_shapes_left_untouched(self):
        """Test non-object roots and non-list workspaces pass through."""
        assert migrate_document([1, 2]) == [1, 2]
        assert migrate_document({"workspaces": "nope"}) == {"workspaces": "nope"}

    def test_result_validates(self):
        """Test the migrated document builds the canonical model."""
        raw = {
            "workspaces": [_workspace("w1")],
            "activeWorktreeId": "wt1",
            "lastOpenedWorkspaceId": "w1",
        }

        document = SessionDocument.model_validate(migrate_document(raw))

        assert document.workspaces[0].active_worktree_id == "wt1"
        assert document.version == CURRENT_SCHEMA_VERSION

"""Session document migration.

Runs once per load, on the raw decoded JSON, before the canonical model is
built. Upgrades version 1 documents (one global active selection) to the
per-workspace selection shape and fills in every field the canonical model
expects, so no other code has to special-case absent fields.

The migration never raises and is idempotent: migrating an already migrated
document changes nothing.
"""

import copy
import logging
from typing import Any, Dict

from .models.legacy import LEGACY_SELECTION_KEYS, LegacySessionDocument
from .models.session import CURRENT_SCHEMA_VERSION

logger = logging.getLogger(__name__)

WORKSPACE_SELECTION_KEYS = ("activeWorktreeId", "activeTabGroupId", "activeTabId")
DOCUMENT_REFERENCE_KEYS = ("lastOpenedWorkspaceId", "activeWorkspaceId")


def migrate_document(raw: Any) -> Any:
    """Return a migrated copy of a decoded session document.

    Args:
        raw: Decoded JSON of the session file

    Returns:
        The migrated document. Input that is not a JSON object, or whose
        ``workspaces`` is not a list, is returned unchanged.
    """
    if not isinstance(raw, dict):
        logger.warning(f"Session document root is {type(raw).__name__}, not an object; leaving it untouched")
        return raw

    workspaces = raw.get("workspaces", [])
    if not isinstance(workspaces, list):
        logger.warning("Session document 'workspaces' is not a list; leaving it untouched")
        return raw

    document = copy.deepcopy(raw)
    document.setdefault("workspaces", [])
    for key in DOCUMENT_REFERENCE_KEYS:
        document.setdefault(key, None)

    _apply_legacy_selection(document)

    for workspace in document["workspaces"]:
        if isinstance(workspace, dict):
            for key in WORKSPACE_SELECTION_KEYS:
                workspace.setdefault(key, None)

    _clear_dangling_references(document)

    if document.get("version") != CURRENT_SCHEMA_VERSION:
        logger.info(f"Migrated session document to schema version {CURRENT_SCHEMA_VERSION}")
        document["version"] = CURRENT_SCHEMA_VERSION

    return document


def _apply_legacy_selection(document: Dict[str, Any]) -> None:
    """Move a version 1 global selection onto the last opened workspace."""
    legacy = LegacySessionDocument.detect(document)
    if legacy is None:
        return

    if legacy.last_opened_workspace_id:
        target = _find_workspace(document, legacy.last_opened_workspace_id)
        if target is not None:
            target["activeWorktreeId"] = legacy.active_worktree_id
            target["activeTabGroupId"] = legacy.active_tab_group_id
            target["activeTabId"] = legacy.active_tab_id
            logger.info(
                f"Moved global active selection onto workspace {legacy.last_opened_workspace_id}"
            )
        else:
            logger.info(
                f"Dropping global active selection: workspace {legacy.last_opened_workspace_id} not found"
            )
    else:
        logger.info("Dropping global active selection: no last opened workspace")

    for key in LEGACY_SELECTION_KEYS:
        document.pop(key, None)


def _clear_dangling_references(document: Dict[str, Any]) -> None:
    for key in DOCUMENT_REFERENCE_KEYS:
        workspace_id = document.get(key)
        if workspace_id is not None and _find_workspace(document, workspace_id) is None:
            logger.info(f"Clearing {key}: workspace {workspace_id} no longer exists")
            document[key] = None


def _find_workspace(document: Dict[str, Any], workspace_id: str):
    for workspace in document["workspaces"]:
        if isinstance(workspace, dict) and workspace.get("id") == workspace_id:
            return workspace
    return None

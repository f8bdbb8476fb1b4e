"""Legacy (version 1) session document shape.

Version 1 kept a single global active selection at the document root instead
of one per workspace. Only the migration reads this model; nothing else in
the package sees the legacy fields.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

LEGACY_SELECTION_KEYS = ("activeWorktreeId", "activeTabGroupId", "activeTabId")


class LegacySessionDocument(BaseModel):
    """Root-level fields of a version 1 document that the migration consumes."""

    active_worktree_id: Optional[str] = Field(default=None, alias="activeWorktreeId")
    active_tab_group_id: Optional[str] = Field(default=None, alias="activeTabGroupId")
    active_tab_id: Optional[str] = Field(default=None, alias="activeTabId")
    last_opened_workspace_id: Optional[str] = Field(default=None, alias="lastOpenedWorkspaceId")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator(
        "active_worktree_id", "active_tab_group_id", "active_tab_id", "last_opened_workspace_id",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v):
        # Version 1 writers stored "" for "no selection"
        return v or None

    @classmethod
    def detect(cls, raw: Dict[str, Any]) -> Optional["LegacySessionDocument"]:
        """Return the legacy view of ``raw``, or None if it carries no legacy fields.

        Documents whose legacy fields have an unexpected type are not
        recognized either, and are left for the canonical model to handle.
        """
        if not any(key in raw for key in LEGACY_SELECTION_KEYS):
            return None
        try:
            return cls.model_validate(raw)
        except ValidationError:
            return None

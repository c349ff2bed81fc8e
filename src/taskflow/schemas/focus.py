"""Focus-mode settings schemas."""

from typing import Literal, Optional

from pydantic import BaseModel, Field


class FocusSettings(BaseModel):
    """Preferences applied when entering focus mode."""

    auto_start_timer: bool = Field(
        default=True,
        description="Start time tracking for the focused task on entry",
    )
    show_subtasks: bool = Field(default=True, description="Show the subtask checklist")
    enable_notifications: bool = Field(
        default=True,
        description="Send notifications while focusing",
    )
    theme: Literal["light", "dark"] = Field(default="light")


class FocusSettingsUpdate(BaseModel):
    """Partial update for focus settings."""

    auto_start_timer: Optional[bool] = None
    show_subtasks: Optional[bool] = None
    enable_notifications: Optional[bool] = None
    theme: Optional[Literal["light", "dark"]] = None

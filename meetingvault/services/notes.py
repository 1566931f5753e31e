"""Meeting notes schema and JSON persistence."""

from __future__ import annotations

import json
import os
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ActionItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    task: str
    owner: Optional[str] = None
    due: Optional[str] = None


class MeetingNotes(BaseModel):
    """Structured notes as produced by the summarization prompt.

    ``summary`` is a single string. Optional fields that the model leaves out
    (or sets to null) stay ``None`` and are omitted from the persisted JSON.
    """

    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    summary: str
    decisions: list[str] = Field(default_factory=list)
    action_items: list[ActionItem] = Field(default_factory=list, alias="actionItems")
    open_questions: list[str] = Field(default_factory=list, alias="openQuestions")
    follow_up_email: Optional[str] = Field(default=None, alias="followUpEmail")

    def display_title(self, default: str = "Meeting Notes") -> str:
        title = (self.title or "").strip()
        return title or default


def decode_notes(json_text: str) -> MeetingNotes:
    """Validate a JSON object string against the schema (raises ``pydantic.ValidationError``)."""
    return MeetingNotes.model_validate_json(json_text)


def notes_to_json(notes: MeetingNotes) -> str:
    payload = notes.model_dump(by_alias=True, exclude_none=True)
    return json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False)


def write_notes(notes: MeetingNotes, path: str) -> None:
    temp_path = f"{path}.tmp"
    with open(temp_path, "w", encoding="utf-8") as handle:
        handle.write(notes_to_json(notes))
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(temp_path, path)


def load_notes(path: str) -> MeetingNotes:
    with open(path, "r", encoding="utf-8") as handle:
        return decode_notes(handle.read())


def format_action_item(item: ActionItem) -> str:
    parts = [item.task]
    owner = (item.owner or "").strip()
    if owner:
        parts.append(f"Owner: {owner}")
    due = (item.due or "").strip()
    if due:
        parts.append(f"Due: {due}")
    return " | ".join(parts)

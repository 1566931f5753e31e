from __future__ import annotations

import os

from meetingvault.services.notes import MeetingNotes, format_action_item


def _bullets(items: list[str]) -> list[str]:
    return [f"- {item.strip()}" for item in items if item.strip()]


def render_markdown(meeting_id: str, notes: MeetingNotes) -> str:
    lines = [f"# {notes.display_title()}", "", f"Meeting ID: {meeting_id}", "", "## Summary"]
    summary = notes.summary.strip()
    lines.append(summary if summary else "(empty)")

    decisions = _bullets(notes.decisions)
    if decisions:
        lines.extend(["", "## Decisions", *decisions])

    if notes.action_items:
        lines.extend(["", "## Action Items"])
        lines.extend(f"- [ ] {format_action_item(item)}" for item in notes.action_items)

    questions = _bullets(notes.open_questions)
    if questions:
        lines.extend(["", "## Open Questions", *questions])

    email = (notes.follow_up_email or "").strip()
    if email:
        lines.extend(["", "## Follow-up Email", email])

    lines.append("")
    return "\n".join(lines)


def write_markdown(meeting_id: str, notes: MeetingNotes, path: str) -> None:
    temp_path = f"{path}.tmp"
    with open(temp_path, "w", encoding="utf-8") as handle:
        handle.write(render_markdown(meeting_id, notes))
    os.replace(temp_path, path)

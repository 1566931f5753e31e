import json

import pytest
from pydantic import ValidationError

from meetingvault.services.llm import LLMProvider
from meetingvault.services.notes import (
    ActionItem,
    MeetingNotes,
    decode_notes,
    load_notes,
    notes_to_json,
    write_notes,
)
from meetingvault.services.notes_markdown import render_markdown
from meetingvault.services.summarization import (
    InvalidNotesSchemaError,
    NoStructuredOutputError,
    SummarizationService,
    build_summary_prompt,
)

NOTES_JSON = json.dumps(
    {
        "title": "Launch sync",
        "summary": "We agreed on the launch date.",
        "decisions": ["Launch on Friday"],
        "actionItems": [
            {"task": "Write release notes", "owner": "Dana", "due": "Thursday"},
            {"task": "Book the room", "owner": None, "due": None},
        ],
        "openQuestions": ["Who covers support?"],
        "followUpEmail": None,
    }
)


class ScriptedProvider(LLMProvider):
    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.prompts = []

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.reply


def test_decode_uses_camel_case_keys():
    notes = decode_notes(NOTES_JSON)
    assert notes.title == "Launch sync"
    assert notes.action_items[0] == ActionItem(task="Write release notes", owner="Dana", due="Thursday")
    assert notes.open_questions == ["Who covers support?"]
    assert notes.follow_up_email is None


def test_decode_requires_summary():
    with pytest.raises(ValidationError):
        decode_notes('{"decisions": []}')


def test_decode_rejects_wrong_types():
    with pytest.raises(ValidationError):
        decode_notes('{"summary": "x", "decisions": "not a list"}')


def test_missing_lists_default_to_empty():
    notes = decode_notes('{"summary": "short"}')
    assert notes.decisions == [] and notes.action_items == [] and notes.open_questions == []


def test_json_is_sorted_and_omits_nulls(tmp_path):
    notes = decode_notes(NOTES_JSON)
    text = notes_to_json(notes)
    data = json.loads(text)

    assert "followUpEmail" not in data
    assert data["actionItems"][1] == {"task": "Book the room"}
    assert list(data.keys()) == sorted(data.keys())
    assert text.startswith("{\n  ")

    path = str(tmp_path / "meeting_notes.json")
    write_notes(notes, path)
    assert load_notes(path) == notes


def test_markdown_rendering():
    notes = decode_notes(NOTES_JSON)
    markdown = render_markdown("abc-123", notes)

    assert markdown.startswith("# Launch sync\n\nMeeting ID: abc-123\n")
    assert "## Summary\nWe agreed on the launch date." in markdown
    assert "## Decisions\n- Launch on Friday" in markdown
    assert "- [ ] Write release notes | Owner: Dana | Due: Thursday" in markdown
    assert "- [ ] Book the room\n" in markdown
    assert "## Open Questions\n- Who covers support?" in markdown
    assert "Follow-up Email" not in markdown


def test_markdown_default_title():
    markdown = render_markdown("m1", MeetingNotes(summary="s"))
    assert markdown.startswith("# Meeting Notes\n")
    assert "## Decisions" not in markdown


def test_prompt_embeds_transcript():
    prompt = build_summary_prompt("hello world")
    assert "<<<\nhello world\n>>>" in prompt
    assert '"actionItems"' in prompt


def test_summarize_extracts_json_wrapped_in_prose():
    provider = ScriptedProvider(f"Sure! Here are the notes:\n```json\n{NOTES_JSON}\n```\nAnything else?")
    notes = SummarizationService(provider).summarize("transcript text")

    assert notes.title == "Launch sync"
    assert "transcript text" in provider.prompts[0]


def test_summarize_without_json():
    with pytest.raises(NoStructuredOutputError):
        SummarizationService(ScriptedProvider("I cannot help with that.")).summarize("t")


def test_summarize_with_schema_mismatch():
    with pytest.raises(InvalidNotesSchemaError):
        SummarizationService(ScriptedProvider('{"title": "no summary"}')).summarize("t")

import logging

from pydantic import ValidationError

from meetingvault.services.llm import LLMProvider, LLMProviderError, extract_first_json_object
from meetingvault.services.notes import MeetingNotes, decode_notes

PROMPTS = {
    "summarize": (
        "You are an assistant that writes concise, structured meeting notes.\n\n"
        "Return ONLY valid JSON (no markdown, no backticks, no extra text) that matches "
        "this exact schema:\n"
        "{{\n"
        '  "title": "string or null",\n'
        '  "summary": "string",\n'
        '  "decisions": ["string"],\n'
        '  "actionItems": [{{"task":"string","owner":"string or null","due":"string or null"}}],\n'
        '  "openQuestions": ["string"],\n'
        '  "followUpEmail": "string or null"\n'
        "}}\n\n"
        "Rules:\n"
        "- Write the content in the dominant language of the transcript.\n"
        "- Keep summary to 8-12 short sentences in plain text (a single string, not an array).\n"
        "- Decisions must be concrete.\n"
        "- Action items must be actionable and specific.\n\n"
        "Transcript:\n"
        "<<<\n"
        "{transcript}\n"
        ">>>"
    ),
}


def build_summary_prompt(transcript: str) -> str:
    return PROMPTS["summarize"].format(transcript=transcript)


class NoStructuredOutputError(LLMProviderError):
    def __init__(self, raw_text: str) -> None:
        super().__init__("Model did not return a JSON object")
        self.raw_text = raw_text


class InvalidNotesSchemaError(LLMProviderError):
    def __init__(self, json_text: str, detail: str) -> None:
        super().__init__(f"Model JSON does not match the meeting notes schema: {detail}")
        self.json_text = json_text
        self.detail = detail


def parse_notes_response(raw_text: str) -> MeetingNotes:
    json_text = extract_first_json_object(raw_text)
    if json_text is None:
        raise NoStructuredOutputError(raw_text)
    try:
        return decode_notes(json_text)
    except ValidationError as exc:
        raise InvalidNotesSchemaError(json_text, str(exc)) from exc


class SummarizationService:
    """Turns transcript text into ``MeetingNotes`` with one LLM call (never retried)."""

    def __init__(self, provider: LLMProvider) -> None:
        self._provider = provider
        self._logger = logging.getLogger("meetingvault.summarization")

    def summarize(self, transcript: str) -> MeetingNotes:
        if not transcript.strip():
            self._logger.warning("Summarizing an empty transcript")
        self._logger.info(
            "Summarization using provider=%s transcript_chars=%s",
            self._provider.__class__.__name__,
            len(transcript),
        )
        raw = self._provider.generate(build_summary_prompt(transcript))
        try:
            notes = parse_notes_response(raw)
        except LLMProviderError:
            self._logger.warning("Unusable summarization response: %s", raw[:500])
            raise
        self._logger.info(
            "Summarization complete: decisions=%s action_items=%s open_questions=%s",
            len(notes.decisions),
            len(notes.action_items),
            len(notes.open_questions),
        )
        return notes

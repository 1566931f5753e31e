import pytest

from meetingvault.services.notes import ActionItem, MeetingNotes
from meetingvault.services.notion_export import (
    MissingNotionTokenError,
    NotionClient,
    NotionHttpError,
    NotionRateLimitedError,
    build_blocks,
)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text="", headers=None):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.text = text
        self.headers = headers or {}

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, headers, json, timeout):
        self.calls.append({"method": method, "url": url, "headers": headers, "json": json})
        if self.responses:
            return self.responses.pop(0)
        return FakeResponse(payload={"object": "list"})


def _client(session, sleeps=None):
    return NotionClient(
        "secret-token",
        session=session,
        sleep=(sleeps.append if sleeps is not None else lambda seconds: None),
    )


def test_build_blocks_layout():
    notes = MeetingNotes(
        summary="Summary text",
        decisions=["Ship"],
        action_items=[ActionItem(task="Write docs", owner="Sam")],
        open_questions=[],
        follow_up_email="Thanks all",
    )
    blocks = build_blocks(notes)

    assert [b["type"] for b in blocks] == [
        "heading_2",
        "paragraph",
        "heading_2",
        "bulleted_list_item",
        "heading_2",
        "to_do",
        "heading_2",
        "paragraph",
    ]
    todo = blocks[5]["to_do"]
    assert todo["checked"] is False
    assert todo["rich_text"][0]["text"]["content"] == "Write docs | Owner: Sam"


def test_long_text_is_split_into_rich_text_pieces():
    blocks = build_blocks(MeetingNotes(summary="x" * 4500))
    pieces = blocks[1]["paragraph"]["rich_text"]
    assert [len(p["text"]["content"]) for p in pieces] == [2000, 2000, 500]


def test_publish_creates_page_then_appends_in_batches():
    notes = MeetingNotes(summary="s", decisions=[f"d{i}" for i in range(246)])
    assert len(build_blocks(notes)) == 249

    session = FakeSession([FakeResponse(payload={"id": "page-1"})])
    page_id = _client(session).publish(notes, "db-1", "Weekly")

    assert page_id == "page-1"
    create = session.calls[0]
    assert create["method"] == "POST"
    assert create["url"] == "https://api.notion.com/v1/pages"
    assert create["json"]["parent"] == {"database_id": "db-1"}
    assert create["json"]["properties"]["Name"]["title"][0]["text"]["content"] == "Weekly"
    assert create["headers"]["Authorization"] == "Bearer secret-token"
    assert create["headers"]["Notion-Version"] == "2022-06-28"

    appends = session.calls[1:]
    assert [c["method"] for c in appends] == ["PATCH"] * 3
    assert all(c["url"] == "https://api.notion.com/v1/blocks/page-1/children" for c in appends)
    assert [len(c["json"]["children"]) for c in appends] == [100, 100, 49]


def test_append_250_blocks_sends_three_requests():
    session = FakeSession([])
    blocks = [{"object": "block", "type": "paragraph"}] * 250
    _client(session).append_blocks("page-1", blocks)
    assert [len(c["json"]["children"]) for c in session.calls] == [100, 100, 50]


def test_rate_limit_waits_for_retry_after():
    sleeps = []
    session = FakeSession(
        [
            FakeResponse(status_code=429, headers={"Retry-After": "2"}),
            FakeResponse(payload={"id": "page-1"}),
        ]
    )
    _client(session, sleeps)._request_json("POST", "/v1/pages", {})
    assert sleeps == [2.0]
    assert len(session.calls) == 2


def test_rate_limit_wait_has_floor_of_one_second():
    sleeps = []
    session = FakeSession(
        [
            FakeResponse(status_code=429, headers={"Retry-After": "0.2"}),
            FakeResponse(status_code=429),
            FakeResponse(payload={}),
        ]
    )
    _client(session, sleeps)._request_json("POST", "/v1/pages", {})
    assert sleeps == [1.0, 1.0]


def test_non_numeric_retry_after_waits_one_second():
    sleeps = []
    session = FakeSession(
        [
            FakeResponse(status_code=429, headers={"Retry-After": "Wed, 21 Oct 2026 07:28:00 GMT"}),
            FakeResponse(payload={"id": "page-1"}),
        ]
    )
    assert _client(session, sleeps)._request_json("POST", "/v1/pages", {}) == {"id": "page-1"}
    assert sleeps == [1.0]
    assert len(session.calls) == 2


def test_rate_limit_exhaustion():
    sleeps = []
    session = FakeSession([FakeResponse(status_code=429, headers={"Retry-After": "1"})] * 3)
    with pytest.raises(NotionRateLimitedError):
        _client(session, sleeps)._request_json("POST", "/v1/pages", {})
    assert len(session.calls) == 3
    assert sleeps == [1.0, 1.0]


def test_other_errors_are_not_retried():
    sleeps = []
    session = FakeSession([FakeResponse(status_code=400, text='{"code":"validation_error"}')])
    with pytest.raises(NotionHttpError) as info:
        _client(session, sleeps)._request_json("POST", "/v1/pages", {})
    assert info.value.status == 400
    assert not info.value.is_restricted
    assert sleeps == []
    assert len(session.calls) == 1


def test_restricted_resource_is_flagged():
    body = '{"object":"error","status":403,"code":"restricted_resource","message":"no access"}'
    session = FakeSession([FakeResponse(status_code=403, text=body)])
    with pytest.raises(NotionHttpError) as info:
        _client(session)._request_json("POST", "/v1/pages", {})
    assert info.value.is_restricted


def test_missing_token():
    with pytest.raises(MissingNotionTokenError):
        NotionClient("", session=FakeSession([])).publish(MeetingNotes(summary="s"), "db", "t")

"""Publish meeting notes to a Notion database as a page with content blocks."""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

import requests

from meetingvault.services.notes import MeetingNotes, format_action_item

NOTION_API_URL = "https://api.notion.com"
NOTION_VERSION = "2022-06-28"
# Notion rejects more than 100 children per append request.
MAX_CHILDREN_PER_REQUEST = 100
# Notion rejects rich text objects longer than this.
MAX_RICH_TEXT_CHARS = 2000
MAX_RATE_LIMIT_RETRIES = 2


class NotionExportError(RuntimeError):
    pass


class MissingNotionTokenError(NotionExportError):
    def __init__(self) -> None:
        super().__init__("Missing Notion token")


class NotionHttpError(NotionExportError):
    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"Notion HTTP {status}: {body}")
        self.status = status
        self.body = body

    @property
    def is_restricted(self) -> bool:
        """True when the integration lacks access to the target database or page."""
        return self.status == 403 or "restricted_resource" in self.body


class NotionRateLimitedError(NotionHttpError):
    def __init__(self, body: str = "Rate limited") -> None:
        super().__init__(429, body)


def _rich_text(text: str) -> list[dict]:
    pieces = [text[i : i + MAX_RICH_TEXT_CHARS] for i in range(0, len(text), MAX_RICH_TEXT_CHARS)]
    return [{"type": "text", "text": {"content": piece}} for piece in (pieces or [""])]


def _block(block_type: str, text: str, **extra: Any) -> dict:
    return {
        "object": "block",
        "type": block_type,
        block_type: {"rich_text": _rich_text(text), **extra},
    }


def build_blocks(notes: MeetingNotes) -> list[dict]:
    blocks = [_block("heading_2", "Summary"), _block("paragraph", notes.summary)]

    if notes.decisions:
        blocks.append(_block("heading_2", "Decisions"))
        blocks.extend(_block("bulleted_list_item", item) for item in notes.decisions)

    if notes.action_items:
        blocks.append(_block("heading_2", "Action Items"))
        blocks.extend(
            _block("to_do", format_action_item(item), checked=False) for item in notes.action_items
        )

    if notes.open_questions:
        blocks.append(_block("heading_2", "Open Questions"))
        blocks.extend(_block("bulleted_list_item", item) for item in notes.open_questions)

    email = (notes.follow_up_email or "").strip()
    if email:
        blocks.append(_block("heading_2", "Follow-up Email"))
        blocks.append(_block("paragraph", notes.follow_up_email or ""))

    return blocks


def _retry_after_seconds(response: requests.Response) -> float:
    raw = response.headers.get("Retry-After")
    try:
        value = float(raw) if raw is not None else 1.0
    except ValueError:
        value = 1.0
    return max(1.0, value)


class NotionClient:
    def __init__(
        self,
        token: str,
        notion_version: str = NOTION_VERSION,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        base_url: str = NOTION_API_URL,
        timeout: int = 60,
    ) -> None:
        self._token = (token or "").strip()
        self._notion_version = notion_version
        self._session = session or requests.Session()
        self._sleep = sleep
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._logger = logging.getLogger("meetingvault.export.notion")

    def publish(self, notes: MeetingNotes, database_id: str, title: str) -> str:
        """Create a page in ``database_id`` and append the notes blocks. Returns the page id."""
        payload = {
            "parent": {"database_id": database_id},
            "properties": {
                "Name": {"title": [{"type": "text", "text": {"content": title}}]},
            },
        }
        data = self._request_json("POST", "/v1/pages", payload)
        page_id = data.get("id") if isinstance(data, dict) else None
        if not isinstance(page_id, str) or not page_id:
            raise NotionExportError("Notion response error: Missing page id")
        self._logger.info("Notion page created: page_id=%s", page_id)
        self.append_blocks(page_id, build_blocks(notes))
        return page_id

    def append_blocks(self, block_id: str, children: list[dict]) -> None:
        for start in range(0, len(children), MAX_CHILDREN_PER_REQUEST):
            batch = children[start : start + MAX_CHILDREN_PER_REQUEST]
            self._request_json("PATCH", f"/v1/blocks/{block_id}/children", {"children": batch})
            self._logger.debug("Notion blocks appended: block_id=%s count=%s", block_id, len(batch))

    def _request_json(self, method: str, path: str, body: dict) -> Any:
        if not self._token:
            raise MissingNotionTokenError()
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Notion-Version": self._notion_version,
            "Content-Type": "application/json",
        }
        url = f"{self._base_url}{path}"
        for attempt in range(MAX_RATE_LIMIT_RETRIES + 1):
            try:
                response = self._session.request(
                    method, url, headers=headers, json=body, timeout=self._timeout
                )
            except requests.RequestException as exc:
                self._logger.warning("Notion request failed: %s %s: %s", method, path, exc)
                raise NotionHttpError(-1, str(exc)) from exc

            if response.status_code == 429:
                if attempt < MAX_RATE_LIMIT_RETRIES:
                    delay = _retry_after_seconds(response)
                    self._logger.warning(
                        "Notion rate limited: %s %s retry_in=%.1fs attempt=%s",
                        method,
                        path,
                        delay,
                        attempt + 1,
                    )
                    self._sleep(delay)
                    continue
                raise NotionRateLimitedError(response.text or "Rate limited")

            if not 200 <= response.status_code < 300:
                self._logger.error(
                    "Notion error: %s %s -> %s %s", method, path, response.status_code, response.text[:500]
                )
                raise NotionHttpError(response.status_code, response.text)

            try:
                return response.json()
            except ValueError as exc:
                raise NotionExportError("Notion response error: body is not JSON") from exc

        raise NotionRateLimitedError()

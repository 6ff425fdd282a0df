"""
Outlook client — Microsoft Graph v1.0 over httpx.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from connectors.base import BaseConnectorClient

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.microsoft.com/v1.0"

_MESSAGE_FIELDS = (
    "id,subject,bodyPreview,from,toRecipients,receivedDateTime,sentDateTime,"
    "isRead,importance,hasAttachments,webLink"
)

_SCRIPT_RE = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_STYLE_RE = re.compile(r"<style[^>]*>.*?</style>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")


def html_to_text(html: str) -> str:
    text = _SCRIPT_RE.sub("", html)
    text = _STYLE_RE.sub("", text)
    text = _TAG_RE.sub(" ", text).replace("&nbsp;", " ")
    return _SPACE_RE.sub(" ", text).strip()


class OutlookClient(BaseConnectorClient):
    error_prefix = "Microsoft Graph API error"

    async def search_emails(
        self,
        query: str,
        folder_id: Optional[str] = None,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        path = f"/me/mailFolders/{folder_id}/messages" if folder_id else "/me/messages"
        data = await self._get_json(
            f"{GRAPH_API_BASE}{path}",
            params={
                "$search": f'"{query}"',
                "$top": str(min(limit, 50)),
                "$select": _MESSAGE_FIELDS,
            },
            # $search requires eventual consistency on Graph
            headers={"ConsistencyLevel": "eventual"},
        )
        messages = data.get("value", [])
        logger.info("outlook search query=%s found=%d", query, len(messages))
        return messages

    async def get_email(self, message_id: str) -> Dict[str, Any]:
        return await self._get_json(f"{GRAPH_API_BASE}/me/messages/{message_id}")

    async def list_folders(self) -> List[Dict[str, Any]]:
        data = await self._get_json(f"{GRAPH_API_BASE}/me/mailFolders", params={"$top": "100"})
        return data.get("value", [])

    async def get_calendar_events(self, start: str, end: str) -> List[Dict[str, Any]]:
        data = await self._get_json(
            f"{GRAPH_API_BASE}/me/calendarView",
            params={
                "startDateTime": start,
                "endDateTime": end,
                "$orderby": "start/dateTime",
                "$top": "100",
            },
        )
        return data.get("value", [])

    async def test_connection(self) -> None:
        await self._get_json(f"{GRAPH_API_BASE}/me")

    @staticmethod
    def body_text(message: Dict[str, Any]) -> str:
        body = message.get("body") or {}
        if body.get("contentType") == "html":
            return html_to_text(body.get("content", ""))
        if body.get("contentType") == "text":
            return body.get("content", "")
        return message.get("bodyPreview", "")

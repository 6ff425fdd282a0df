"""
Outlook tools — mail search/read, folders, calendar view.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from cache.engine import ConnectorCache
from connectors.outlook import OutlookClient
from tools import ToolDefinition, collect_tools, tool


def _address(entry: Dict[str, Any] | None) -> Dict[str, Any]:
    email = (entry or {}).get("emailAddress", {})
    return {"name": email.get("name"), "email": email.get("address")}


async def fetch_outlook_folders(client: OutlookClient) -> List[Dict[str, Any]]:
    return [
        {
            "id": f.get("id"),
            "name": f.get("displayName"),
            "unread_count": f.get("unreadItemCount", 0),
            "total_count": f.get("totalItemCount", 0),
            "has_subfolders": f.get("childFolderCount", 0) > 0,
        }
        for f in await client.list_folders()
    ]


def build_outlook_tools(client: OutlookClient, cache: ConnectorCache) -> List[ToolDefinition]:
    @tool(
        properties={
            "query": {
                "type": "string",
                "description": 'Search query (e.g. "from:john@example.com", "subject:meeting", "deployment failed")',
            },
            "folder": {"type": "string", "description": "Folder ID to search in (see outlook_list_folders)"},
            "limit": {"type": "integer", "description": "Maximum number of results (default 10)"},
        },
        required=["query"],
    )
    async def outlook_search_emails(query: str, folder: Optional[str] = None, limit: int = 10) -> List[Dict[str, Any]]:
        """Search emails in Outlook using Microsoft Search. Can search by subject, sender, content, etc."""
        messages = await client.search_emails(query, folder, limit)
        return [
            {
                "id": m.get("id"),
                "subject": m.get("subject"),
                "from": _address(m.get("from")),
                "to": [_address(r) for r in m.get("toRecipients", [])],
                "preview": m.get("bodyPreview"),
                "received_at": m.get("receivedDateTime"),
                "is_read": m.get("isRead"),
                "importance": m.get("importance"),
                "has_attachments": m.get("hasAttachments"),
                "web_link": m.get("webLink"),
            }
            for m in messages
        ]

    @tool(
        properties={"message_id": {"type": "string", "description": "The ID of the email message"}},
        required=["message_id"],
    )
    async def outlook_get_email(message_id: str) -> Dict[str, Any]:
        """Get the full content of a specific email by its ID."""
        m = await client.get_email(message_id)
        return {
            "id": m.get("id"),
            "subject": m.get("subject"),
            "from": _address(m.get("from")),
            "to": [_address(r) for r in m.get("toRecipients", [])],
            "body": OutlookClient.body_text(m),
            "received_at": m.get("receivedDateTime"),
            "sent_at": m.get("sentDateTime"),
            "is_read": m.get("isRead"),
            "has_attachments": m.get("hasAttachments"),
            "web_link": m.get("webLink"),
        }

    @tool()
    async def outlook_list_folders() -> List[Dict[str, Any]]:
        """List all mail folders in Outlook with IDs and unread counts."""
        folders, _ = await cache.get("outlook", "folders", lambda: fetch_outlook_folders(client))
        return folders

    @tool(
        properties={
            "start_date": {"type": "string", "description": 'Start in ISO format (e.g. "2024-01-15T09:00:00")'},
            "end_date": {"type": "string", "description": 'End in ISO format (e.g. "2024-01-22T17:00:00")'},
        },
        required=["start_date", "end_date"],
    )
    async def outlook_get_calendar_events(start_date: str, end_date: str) -> List[Dict[str, Any]]:
        """Get calendar events within a date range from the Outlook calendar."""
        events = await client.get_calendar_events(start_date, end_date)
        return [
            {
                "id": e.get("id"),
                "subject": e.get("subject"),
                "preview": e.get("bodyPreview"),
                "start": e.get("start", {}).get("dateTime"),
                "end": e.get("end", {}).get("dateTime"),
                "time_zone": e.get("start", {}).get("timeZone"),
                "location": (e.get("location") or {}).get("displayName"),
                "organizer": _address(e.get("organizer")),
                "attendees": [
                    {**_address(a), "response": a.get("status", {}).get("response")}
                    for a in e.get("attendees", [])
                ],
                "is_online_meeting": e.get("isOnlineMeeting"),
                "web_link": e.get("webLink"),
            }
            for e in events
        ]

    return collect_tools(
        "outlook",
        outlook_search_emails,
        outlook_get_email,
        outlook_list_folders,
        outlook_get_calendar_events,
    )

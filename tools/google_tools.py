"""
Google Workspace tools — Gmail, Drive, Docs, Sheets, Calendar.

Each ``build_*_tools(client, cache)`` factory closes over one connector
client and the shared ``ConnectorCache``.  Listing calls with no filter go
through the cache under the same keys the preloader warms; targeted reads
(a single message, a document body, a cell range) always hit the API.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from cache.engine import ConnectorCache
from connectors.google import (
    MIME_DOCUMENT,
    MIME_PRESENTATION,
    MIME_SPREADSHEET,
    GmailClient,
    GoogleCalendarClient,
    GoogleDocsClient,
    GoogleDriveClient,
    GoogleSheetsClient,
)
from tools import ToolDefinition, collect_tools, tool

logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 50_000

_FILE_TYPES = {
    "document": MIME_DOCUMENT,
    "spreadsheet": MIME_SPREADSHEET,
    "presentation": MIME_PRESENTATION,
    "pdf": "application/pdf",
}


def _file_summary(f: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": f.get("id"),
        "name": f.get("name"),
        "type": f.get("mimeType"),
        "modified_time": f.get("modifiedTime"),
        "web_view_link": f.get("webViewLink"),
    }


def _truncate(text: str) -> Dict[str, Any]:
    return {"content": text[:MAX_CONTENT_CHARS], "truncated": len(text) > MAX_CONTENT_CHARS}


# ── Gmail ────────────────────────────────────────────────────────────────


async def fetch_gmail_labels(client: GmailClient) -> List[Dict[str, Any]]:
    labels = await client.list_labels()
    return [
        {
            "id": label.get("id"),
            "name": label.get("name"),
            "type": label.get("type"),
            "messages_total": label.get("messagesTotal"),
            "messages_unread": label.get("messagesUnread"),
        }
        for label in labels
    ]


def build_gmail_tools(client: GmailClient, cache: ConnectorCache) -> List[ToolDefinition]:
    @tool(
        properties={
            "query": {
                "type": "string",
                "description": 'Gmail search query (e.g. "from:john@example.com", "subject:meeting", "is:unread")',
            },
            "limit": {"type": "integer", "description": "Maximum number of results (default 10)"},
        },
        required=["query"],
    )
    async def gmail_search_emails(query: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Search emails in Gmail using Gmail search syntax. Can search by sender, subject, content, labels, etc."""
        messages = await client.search_emails(query, limit)
        return [
            {
                "id": msg.get("id"),
                "thread_id": msg.get("threadId"),
                "subject": GmailClient.get_header(msg, "Subject") or "(no subject)",
                "from": GmailClient.get_header(msg, "From"),
                "to": GmailClient.get_header(msg, "To"),
                "date": GmailClient.get_header(msg, "Date"),
                "snippet": msg.get("snippet"),
                "labels": msg.get("labelIds", []),
                "web_link": f"https://mail.google.com/mail/u/0/#inbox/{msg.get('id')}",
            }
            for msg in messages
        ]

    @tool(
        properties={"message_id": {"type": "string", "description": "The ID of the email message"}},
        required=["message_id"],
    )
    async def gmail_get_email(message_id: str) -> Dict[str, Any]:
        """Get the full content of a specific email by its ID."""
        msg = await client.get_email(message_id)
        return {
            "id": msg.get("id"),
            "thread_id": msg.get("threadId"),
            "subject": GmailClient.get_header(msg, "Subject") or "(no subject)",
            "from": GmailClient.get_header(msg, "From"),
            "to": GmailClient.get_header(msg, "To"),
            "cc": GmailClient.get_header(msg, "Cc"),
            "date": GmailClient.get_header(msg, "Date"),
            "body": GmailClient.get_plain_text_body(msg)[:MAX_CONTENT_CHARS],
            "labels": msg.get("labelIds", []),
        }

    @tool()
    async def gmail_list_labels() -> List[Dict[str, Any]]:
        """List all Gmail labels (folders/categories) with unread counts."""
        labels, _ = await cache.get("gmail", "labels", lambda: fetch_gmail_labels(client))
        return labels

    return collect_tools("gmail", gmail_search_emails, gmail_get_email, gmail_list_labels)


# ── Drive ────────────────────────────────────────────────────────────────


async def fetch_recent_files(client: GoogleDriveClient) -> List[Dict[str, Any]]:
    return [_file_summary(f) for f in await client.list_recent(20)]


def build_google_drive_tools(client: GoogleDriveClient, cache: ConnectorCache) -> List[ToolDefinition]:
    @tool(
        properties={
            "query": {"type": "string", "description": "Filter files by name"},
            "folder_id": {"type": "string", "description": "ID of folder to list files from"},
            "max_results": {"type": "integer", "description": "Maximum number of results (default 20)"},
        },
    )
    async def google_drive_list_files(
        query: Optional[str] = None,
        folder_id: Optional[str] = None,
        max_results: int = 20,
    ) -> Dict[str, Any]:
        """List files in Google Drive, optionally filtered by query or folder."""
        if not query and not folder_id and max_results == 20:
            files, _ = await cache.get("google-drive", "recent", lambda: fetch_recent_files(client))
            return {"count": len(files), "files": files}
        result = await client.list_files(query, max_results, folder_id)
        files = [_file_summary(f) for f in result.get("files", [])]
        return {"count": len(files), "files": files, "has_more": bool(result.get("nextPageToken"))}

    @tool(
        properties={"file_id": {"type": "string", "description": "The ID of the file"}},
        required=["file_id"],
    )
    async def google_drive_get_file(file_id: str) -> Dict[str, Any]:
        """Get details of a specific file in Google Drive."""
        f = await client.get_file(file_id)
        return {
            **_file_summary(f),
            "size": f.get("size"),
            "created_time": f.get("createdTime"),
            "owners": [
                {"name": o.get("displayName"), "email": o.get("emailAddress")}
                for o in f.get("owners", [])
            ],
        }

    @tool(
        properties={"file_id": {"type": "string", "description": "The ID of the file to read"}},
        required=["file_id"],
    )
    async def google_drive_get_file_content(file_id: str) -> Dict[str, Any]:
        """Get the text content of a file in Google Drive (Google Docs, Sheets, text files)."""
        return _truncate(await client.get_file_content(file_id))

    @tool(
        properties={"parent_id": {"type": "string", "description": "ID of parent folder (omit for root)"}},
    )
    async def google_drive_list_folders(parent_id: Optional[str] = None) -> Dict[str, Any]:
        """List folders in Google Drive."""
        folders = await client.list_folders(parent_id)
        return {
            "count": len(folders),
            "folders": [{"id": f.get("id"), "name": f.get("name")} for f in folders],
        }

    @tool(
        properties={
            "query": {"type": "string", "description": "Search query"},
            "file_type": {
                "type": "string",
                "enum": ["document", "spreadsheet", "presentation", "pdf", "any"],
                "description": "Filter by file type",
            },
        },
        required=["query"],
    )
    async def google_drive_search(query: str, file_type: str = "any") -> Dict[str, Any]:
        """Search for files in Google Drive by content."""
        files = await client.search_files(query, _FILE_TYPES.get(file_type))
        return {"count": len(files), "files": [_file_summary(f) for f in files]}

    return collect_tools(
        "google-drive",
        google_drive_list_files,
        google_drive_get_file,
        google_drive_get_file_content,
        google_drive_list_folders,
        google_drive_search,
    )


# ── Docs ─────────────────────────────────────────────────────────────────


async def fetch_recent_documents(client: GoogleDocsClient) -> List[Dict[str, Any]]:
    return [_file_summary(f) for f in await client.list_documents()]


def build_google_docs_tools(client: GoogleDocsClient, cache: ConnectorCache) -> List[ToolDefinition]:
    @tool(
        properties={
            "query": {"type": "string", "description": "Filter documents by name"},
            "max_results": {"type": "integer", "description": "Maximum number of results (default 20)"},
        },
    )
    async def google_docs_list(query: Optional[str] = None, max_results: int = 20) -> Dict[str, Any]:
        """List Google Docs documents."""
        if not query and max_results == 20:
            docs, _ = await cache.get("google-docs", "recent", lambda: fetch_recent_documents(client))
        else:
            docs = [_file_summary(f) for f in await client.list_documents(query, max_results)]
        return {"count": len(docs), "documents": docs}

    @tool(
        properties={"document_id": {"type": "string", "description": "The ID of the document"}},
        required=["document_id"],
    )
    async def google_docs_get(document_id: str) -> Dict[str, Any]:
        """Get the full text content of a Google Doc."""
        doc = await client.get_document(document_id)
        return {
            "id": doc.get("documentId"),
            "title": doc.get("title"),
            **_truncate(GoogleDocsClient.document_text(doc)),
        }

    @tool(
        properties={"query": {"type": "string", "description": "Text to find in document content"}},
        required=["query"],
    )
    async def google_docs_search(query: str) -> Dict[str, Any]:
        """Search for Google Docs by content."""
        docs = await client.search_documents(query)
        return {"count": len(docs), "documents": [_file_summary(f) for f in docs]}

    return collect_tools("google-docs", google_docs_list, google_docs_get, google_docs_search)


# ── Sheets ───────────────────────────────────────────────────────────────


async def fetch_recent_spreadsheets(client: GoogleSheetsClient) -> List[Dict[str, Any]]:
    return [_file_summary(f) for f in await client.list_spreadsheets()]


def build_google_sheets_tools(client: GoogleSheetsClient, cache: ConnectorCache) -> List[ToolDefinition]:
    @tool(
        properties={
            "query": {"type": "string", "description": "Filter spreadsheets by name"},
            "max_results": {"type": "integer", "description": "Maximum number of results (default 20)"},
        },
    )
    async def google_sheets_list(query: Optional[str] = None, max_results: int = 20) -> Dict[str, Any]:
        """List Google Sheets spreadsheets."""
        if not query and max_results == 20:
            sheets, _ = await cache.get("google-sheets", "recent", lambda: fetch_recent_spreadsheets(client))
        else:
            sheets = [_file_summary(f) for f in await client.list_spreadsheets(query, max_results)]
        return {"count": len(sheets), "spreadsheets": sheets}

    @tool(
        properties={"spreadsheet_id": {"type": "string", "description": "The ID of the spreadsheet"}},
        required=["spreadsheet_id"],
    )
    async def google_sheets_get_info(spreadsheet_id: str) -> Dict[str, Any]:
        """Get information about a spreadsheet including its sheets."""
        spreadsheet = await client.get_spreadsheet(spreadsheet_id)
        return {
            "id": spreadsheet.get("spreadsheetId"),
            "title": spreadsheet.get("properties", {}).get("title"),
            "url": spreadsheet.get("spreadsheetUrl"),
            "sheets": [
                {
                    "id": s.get("properties", {}).get("sheetId"),
                    "title": s.get("properties", {}).get("title"),
                    "row_count": s.get("properties", {}).get("gridProperties", {}).get("rowCount"),
                    "column_count": s.get("properties", {}).get("gridProperties", {}).get("columnCount"),
                }
                for s in spreadsheet.get("sheets", [])
            ],
        }

    @tool(
        properties={
            "spreadsheet_id": {"type": "string", "description": "The ID of the spreadsheet"},
            "range": {"type": "string", "description": 'A1 notation range (e.g. "Sheet1!A1:D10")'},
        },
        required=["spreadsheet_id", "range"],
    )
    async def google_sheets_get_values(spreadsheet_id: str, range: str) -> Dict[str, Any]:
        """Get cell values from a specific range in a Google Sheet."""
        values = await client.get_values(spreadsheet_id, range)
        return {"range": range, "row_count": len(values), "values": values}

    return collect_tools(
        "google-sheets",
        google_sheets_list,
        google_sheets_get_info,
        google_sheets_get_values,
    )


# ── Calendar ─────────────────────────────────────────────────────────────


def _format_event(event: Dict[str, Any], detailed: bool = False) -> Dict[str, Any]:
    start = event.get("start", {})
    end = event.get("end", {})
    result = {
        "id": event.get("id"),
        "title": event.get("summary", "(no title)"),
        "start": start.get("dateTime") or start.get("date"),
        "end": end.get("dateTime") or end.get("date"),
        "all_day": "date" in start and "dateTime" not in start,
        "location": event.get("location"),
        "html_link": event.get("htmlLink"),
    }
    if detailed:
        result["description"] = event.get("description")
        result["organizer"] = event.get("organizer", {}).get("email")
        result["attendees"] = [
            {"email": a.get("email"), "response": a.get("responseStatus")}
            for a in event.get("attendees", [])
        ]
    return result


async def fetch_upcoming_events(client: GoogleCalendarClient) -> List[Dict[str, Any]]:
    return [_format_event(e) for e in await client.get_upcoming_events("primary", 7)]


def build_google_calendar_tools(client: GoogleCalendarClient, cache: ConnectorCache) -> List[ToolDefinition]:
    calendar_id_prop = {"type": "string", "description": "Calendar ID (default: primary)"}

    @tool()
    async def google_calendar_list_calendars() -> Dict[str, Any]:
        """List all calendars the user has access to."""
        calendars = await client.list_calendars()
        return {
            "count": len(calendars),
            "calendars": [
                {
                    "id": c.get("id"),
                    "name": c.get("summary"),
                    "time_zone": c.get("timeZone"),
                    "primary": c.get("primary", False),
                }
                for c in calendars
            ],
        }

    @tool(properties={"calendar_id": calendar_id_prop})
    async def google_calendar_get_todays_events(calendar_id: str = "primary") -> Dict[str, Any]:
        """Get today's events from a calendar."""
        events = [_format_event(e) for e in await client.get_todays_events(calendar_id)]
        return {"count": len(events), "events": events}

    @tool(
        properties={
            "calendar_id": calendar_id_prop,
            "days": {"type": "integer", "description": "Number of days ahead to look (default 7)"},
            "max_results": {"type": "integer", "description": "Maximum number of events (default 50)"},
        },
    )
    async def google_calendar_get_upcoming(
        calendar_id: str = "primary",
        days: int = 7,
        max_results: int = 50,
    ) -> Dict[str, Any]:
        """Get upcoming events from a calendar."""
        if calendar_id == "primary" and days == 7 and max_results == 50:
            events, _ = await cache.get("google-calendar", "events", lambda: fetch_upcoming_events(client))
        else:
            raw = await client.get_upcoming_events(calendar_id, days, max_results)
            events = [_format_event(e) for e in raw]
        return {"count": len(events), "events": events}

    @tool(
        properties={"query": {"type": "string", "description": "Search query"}, "calendar_id": calendar_id_prop},
        required=["query"],
    )
    async def google_calendar_search(query: str, calendar_id: str = "primary") -> Dict[str, Any]:
        """Search for upcoming events by keyword."""
        events = [_format_event(e) for e in await client.search_events(query, calendar_id)]
        return {"count": len(events), "events": events}

    @tool(
        properties={"event_id": {"type": "string", "description": "The ID of the event"}, "calendar_id": calendar_id_prop},
        required=["event_id"],
    )
    async def google_calendar_get_event(event_id: str, calendar_id: str = "primary") -> Dict[str, Any]:
        """Get details of a specific calendar event."""
        return _format_event(await client.get_event(calendar_id, event_id), detailed=True)

    @tool(
        properties={
            "start_time": {"type": "string", "description": "Start time in ISO 8601 format"},
            "end_time": {"type": "string", "description": "End time in ISO 8601 format"},
            "calendar_ids": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Calendar IDs to check (default: primary)",
            },
        },
        required=["start_time", "end_time"],
    )
    async def google_calendar_check_availability(
        start_time: str,
        end_time: str,
        calendar_ids: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Check free/busy status for a time range."""
        free_busy = await client.get_free_busy(start_time, end_time, calendar_ids or ["primary"])
        return {
            "time_range": {"start": start_time, "end": end_time},
            "calendars": [
                {
                    "calendar_id": cal_id,
                    "busy": data.get("busy", []),
                    "is_free": not data.get("busy"),
                }
                for cal_id, data in free_busy.items()
            ],
        }

    return collect_tools(
        "google-calendar",
        google_calendar_list_calendars,
        google_calendar_get_todays_events,
        google_calendar_get_upcoming,
        google_calendar_search,
        google_calendar_get_event,
        google_calendar_check_availability,
    )

"""
Google Workspace API clients — Gmail, Drive, Docs, Sheets, Calendar.

Each client builds a ``googleapiclient`` service from a fresh access token
(``Credentials(token=...)``) and offloads every synchronous ``.execute()``
to a thread via ``asyncio.to_thread`` so the event loop never blocks.
``HttpError`` from the discovery client is mapped to ``UpstreamAPIError``.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from connectors.base import BaseConnectorClient
from connectors.errors import UpstreamAPIError

logger = logging.getLogger(__name__)

MIME_DOCUMENT = "application/vnd.google-apps.document"
MIME_SPREADSHEET = "application/vnd.google-apps.spreadsheet"
MIME_PRESENTATION = "application/vnd.google-apps.presentation"
MIME_FOLDER = "application/vnd.google-apps.folder"

_DRIVE_FILE_FIELDS = "id, name, mimeType, size, createdTime, modifiedTime, webViewLink, owners(displayName, emailAddress)"


def _escape_query(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class GoogleApiClient(BaseConnectorClient):
    """Shared service construction and error mapping for Google APIs."""

    api_name: str = ""
    api_version: str = ""

    async def _service(self, api_name: str | None = None, api_version: str | None = None):
        token = await self._access_token()
        creds = Credentials(token=token)
        # discovery may do I/O
        return await asyncio.to_thread(
            build,
            api_name or self.api_name,
            api_version or self.api_version,
            credentials=creds,
            cache_discovery=False,
        )

    async def _execute(self, request) -> Any:
        try:
            return await asyncio.to_thread(request.execute)
        except HttpError as exc:
            status = getattr(exc.resp, "status", None)
            raise UpstreamAPIError(
                f"{self.error_prefix} ({status}): {exc.reason if hasattr(exc, 'reason') else exc}",
                status_code=int(status) if status else None,
            ) from exc


# ── Gmail ────────────────────────────────────────────────────────────────


class GmailClient(GoogleApiClient):
    error_prefix = "Gmail API error"
    api_name = "gmail"
    api_version = "v1"

    async def search_emails(self, query: str, limit: int = 10) -> List[Dict[str, Any]]:
        service = await self._service()
        listing = await self._execute(
            service.users().messages().list(userId="me", q=query, maxResults=min(limit, 50))
        )
        messages = []
        for meta in listing.get("messages", []):
            msg = await self._execute(
                service.users().messages().get(
                    userId="me",
                    id=meta["id"],
                    format="metadata",
                    metadataHeaders=["Subject", "From", "To", "Date"],
                )
            )
            messages.append(msg)
        logger.info("gmail search query=%s found=%d", query, len(messages))
        return messages

    async def get_email(self, message_id: str) -> Dict[str, Any]:
        service = await self._service()
        return await self._execute(
            service.users().messages().get(userId="me", id=message_id, format="full")
        )

    async def list_labels(self) -> List[Dict[str, Any]]:
        service = await self._service()
        listing = await self._execute(service.users().labels().list(userId="me"))
        labels = []
        for label in listing.get("labels", []):
            detail = await self._execute(
                service.users().labels().get(userId="me", id=label["id"])
            )
            labels.append(detail)
        return labels

    async def test_connection(self) -> None:
        service = await self._service()
        await self._execute(service.users().getProfile(userId="me"))

    @staticmethod
    def get_header(msg: Dict[str, Any], name: str) -> Optional[str]:
        for header in msg.get("payload", {}).get("headers", []):
            if header.get("name", "").lower() == name.lower():
                return header.get("value")
        return None

    @staticmethod
    def get_plain_text_body(msg: Dict[str, Any]) -> str:
        """Walk the MIME tree and return the first text/plain part."""
        payload = msg.get("payload", {})
        stack = [payload]
        while stack:
            part = stack.pop(0)
            data = part.get("body", {}).get("data")
            if data and part.get("mimeType", "text/plain").startswith("text/plain"):
                return base64.urlsafe_b64decode(data).decode(errors="replace")
            stack.extend(part.get("parts", []))
        return msg.get("snippet", "")


# ── Drive ────────────────────────────────────────────────────────────────


class GoogleDriveClient(GoogleApiClient):
    error_prefix = "Google Drive API error"
    api_name = "drive"
    api_version = "v3"

    async def list_files(
        self,
        query: str | None = None,
        max_results: int = 20,
        folder_id: str | None = None,
        mime_type: str | None = None,
        order_by: str = "modifiedTime desc",
    ) -> Dict[str, Any]:
        clauses = ["trashed = false"]
        if query:
            clauses.append(f"name contains '{_escape_query(query)}'")
        if folder_id:
            clauses.append(f"'{_escape_query(folder_id)}' in parents")
        if mime_type:
            clauses.append(f"mimeType = '{mime_type}'")
        service = await self._service()
        return await self._execute(
            service.files().list(
                q=" and ".join(clauses),
                pageSize=min(max_results, 100),
                orderBy=order_by,
                fields=f"nextPageToken, files({_DRIVE_FILE_FIELDS})",
            )
        )

    async def search_files(self, query: str, mime_type: str | None = None) -> List[Dict[str, Any]]:
        clauses = ["trashed = false", f"fullText contains '{_escape_query(query)}'"]
        if mime_type:
            clauses.append(f"mimeType = '{mime_type}'")
        service = await self._service()
        result = await self._execute(
            service.files().list(
                q=" and ".join(clauses),
                pageSize=20,
                fields=f"files({_DRIVE_FILE_FIELDS})",
            )
        )
        return result.get("files", [])

    async def get_file(self, file_id: str) -> Dict[str, Any]:
        service = await self._service()
        return await self._execute(service.files().get(fileId=file_id, fields=_DRIVE_FILE_FIELDS))

    async def get_file_content(self, file_id: str) -> str:
        """Text content; Google-native files are exported as plain text or CSV."""
        meta = await self.get_file(file_id)
        service = await self._service()
        mime = meta.get("mimeType", "")
        if mime == MIME_SPREADSHEET:
            data = await self._execute(service.files().export(fileId=file_id, mimeType="text/csv"))
        elif mime.startswith("application/vnd.google-apps."):
            data = await self._execute(service.files().export(fileId=file_id, mimeType="text/plain"))
        else:
            data = await self._execute(service.files().get_media(fileId=file_id))
        if isinstance(data, bytes):
            return data.decode(errors="replace")
        return str(data)

    async def list_folders(self, parent_id: str | None = None) -> List[Dict[str, Any]]:
        result = await self.list_files(
            folder_id=parent_id or "root",
            mime_type=MIME_FOLDER,
            max_results=100,
            order_by="name",
        )
        return result.get("files", [])

    async def list_recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        result = await self.list_files(max_results=limit)
        return result.get("files", [])

    async def test_connection(self) -> None:
        service = await self._service()
        await self._execute(service.about().get(fields="user"))


# ── Docs ─────────────────────────────────────────────────────────────────


class GoogleDocsClient(GoogleDriveClient):
    """Docs metadata comes from Drive; content from the Docs API."""

    error_prefix = "Google Docs API error"

    async def list_documents(self, query: str | None = None, max_results: int = 20) -> List[Dict[str, Any]]:
        result = await self.list_files(query=query, max_results=max_results, mime_type=MIME_DOCUMENT)
        return result.get("files", [])

    async def search_documents(self, query: str) -> List[Dict[str, Any]]:
        return await self.search_files(query, mime_type=MIME_DOCUMENT)

    async def get_document(self, document_id: str) -> Dict[str, Any]:
        service = await self._service("docs", "v1")
        return await self._execute(service.documents().get(documentId=document_id))

    @staticmethod
    def document_text(document: Dict[str, Any]) -> str:
        chunks: List[str] = []
        for element in document.get("body", {}).get("content", []):
            paragraph = element.get("paragraph")
            if not paragraph:
                continue
            for run in paragraph.get("elements", []):
                text = run.get("textRun", {}).get("content")
                if text:
                    chunks.append(text)
        return "".join(chunks)


# ── Sheets ───────────────────────────────────────────────────────────────


class GoogleSheetsClient(GoogleDriveClient):
    error_prefix = "Google Sheets API error"

    async def list_spreadsheets(self, query: str | None = None, max_results: int = 20) -> List[Dict[str, Any]]:
        result = await self.list_files(query=query, max_results=max_results, mime_type=MIME_SPREADSHEET)
        return result.get("files", [])

    async def get_spreadsheet(self, spreadsheet_id: str) -> Dict[str, Any]:
        service = await self._service("sheets", "v4")
        return await self._execute(
            service.spreadsheets().get(spreadsheetId=spreadsheet_id, includeGridData=False)
        )

    async def get_values(self, spreadsheet_id: str, a1_range: str) -> List[List[Any]]:
        service = await self._service("sheets", "v4")
        result = await self._execute(
            service.spreadsheets().values().get(spreadsheetId=spreadsheet_id, range=a1_range)
        )
        return result.get("values", [])


# ── Calendar ─────────────────────────────────────────────────────────────


class GoogleCalendarClient(GoogleApiClient):
    error_prefix = "Google Calendar API error"
    api_name = "calendar"
    api_version = "v3"

    async def list_calendars(self) -> List[Dict[str, Any]]:
        service = await self._service()
        result = await self._execute(service.calendarList().list())
        return result.get("items", [])

    async def list_events(
        self,
        calendar_id: str = "primary",
        *,
        time_min: datetime,
        time_max: datetime | None = None,
        query: str | None = None,
        max_results: int = 50,
    ) -> List[Dict[str, Any]]:
        kwargs: Dict[str, Any] = {
            "calendarId": calendar_id,
            "timeMin": time_min.isoformat(),
            "singleEvents": True,
            "orderBy": "startTime",
            "maxResults": min(max_results, 250),
        }
        if time_max is not None:
            kwargs["timeMax"] = time_max.isoformat()
        if query:
            kwargs["q"] = query
        service = await self._service()
        result = await self._execute(service.events().list(**kwargs))
        return result.get("items", [])

    async def get_upcoming_events(
        self, calendar_id: str = "primary", days: int = 7, max_results: int = 50
    ) -> List[Dict[str, Any]]:
        now = datetime.now(timezone.utc)
        return await self.list_events(
            calendar_id, time_min=now, time_max=now + timedelta(days=days), max_results=max_results
        )

    async def get_todays_events(self, calendar_id: str = "primary") -> List[Dict[str, Any]]:
        start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        return await self.list_events(calendar_id, time_min=start, time_max=start + timedelta(days=1))

    async def search_events(self, query: str, calendar_id: str = "primary") -> List[Dict[str, Any]]:
        return await self.list_events(calendar_id, time_min=datetime.now(timezone.utc), query=query)

    async def get_event(self, calendar_id: str, event_id: str) -> Dict[str, Any]:
        service = await self._service()
        return await self._execute(service.events().get(calendarId=calendar_id, eventId=event_id))

    async def get_free_busy(
        self, start_time: str, end_time: str, calendar_ids: List[str]
    ) -> Dict[str, Any]:
        service = await self._service()
        result = await self._execute(
            service.freebusy().query(
                body={
                    "timeMin": start_time,
                    "timeMax": end_time,
                    "items": [{"id": cid} for cid in calendar_ids],
                }
            )
        )
        return result.get("calendars", {})

    async def test_connection(self) -> None:
        service = await self._service()
        await self._execute(service.calendarList().list(maxResults=1))

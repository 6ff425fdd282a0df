"""
Yahoo Mail client — IMAP over TLS, authenticated with OAuth2 (XOAUTH2).

``imaplib`` is synchronous, so every IMAP session runs in a worker thread
via ``asyncio.to_thread``.  A session is opened per call and always logged
out; the access token is fetched on the event loop before the thread starts.
"""

from __future__ import annotations

import asyncio
import email
import imaplib
import logging
import re
from email import policy
from email.message import EmailMessage
from typing import Any, Callable, Dict, List, Optional

from connectors.base import BaseConnectorClient
from connectors.errors import ConfigurationError, UpstreamAPIError

logger = logging.getLogger(__name__)

IMAP_HOST = "imap.mail.yahoo.com"
IMAP_PORT = 993

_LIST_RE = re.compile(r'\((?P<flags>[^)]*)\) "(?P<delim>[^"]*)" (?P<name>.+)')
_STATUS_RE = re.compile(r"(MESSAGES|UNSEEN) (\d+)")
_FLAGS_RE = re.compile(rb"FLAGS \(([^)]*)\)")


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def xoauth2_string(user: str, access_token: str) -> bytes:
    return f"user={user}\x01auth=Bearer {access_token}\x01\x01".encode()


def parse_message(uid: str, raw: bytes, flags: bytes = b"", include_body: bool = False) -> Dict[str, Any]:
    msg: EmailMessage = email.message_from_bytes(raw, policy=policy.default)  # type: ignore[assignment]
    text = ""
    part = msg.get_body(preferencelist=("plain", "html"))
    if part is not None:
        try:
            text = part.get_content()
        except (LookupError, UnicodeDecodeError):
            text = ""
    result = {
        "id": uid,
        "subject": str(msg.get("Subject", "")) or "(no subject)",
        "from": str(msg.get("From", "")),
        "to": str(msg.get("To", "")),
        "date": str(msg.get("Date", "")),
        "is_read": b"\\Seen" in flags,
        "snippet": " ".join(text.split())[:200],
    }
    if include_body:
        result["body"] = text
    return result


class YahooMailClient(BaseConnectorClient):
    error_prefix = "Yahoo Mail error"

    @property
    def email_address(self) -> str:
        address = self.config.get("email")
        if not address:
            raise ConfigurationError("Yahoo email address is not configured")
        return address

    async def _run(self, operation: Callable[..., Any], *args: Any) -> Any:
        token = await self._access_token()
        user = self.email_address
        try:
            return await asyncio.to_thread(self._with_session, user, token, operation, *args)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise UpstreamAPIError(f"{self.error_prefix}: {exc}") from exc

    def _with_session(self, user: str, token: str, operation: Callable[..., Any], *args: Any) -> Any:
        conn = imaplib.IMAP4_SSL(IMAP_HOST, IMAP_PORT, timeout=self._timeout)
        try:
            conn.authenticate("XOAUTH2", lambda _: xoauth2_string(user, token))
            return operation(conn, *args)
        finally:
            try:
                conn.logout()
            except (imaplib.IMAP4.error, OSError) as exc:
                logger.debug("IMAP logout failed: %s", exc)

    # ── IMAP operations (run inside the worker thread) ──────────────────

    @staticmethod
    def _fetch(conn: imaplib.IMAP4, uid: str, include_body: bool) -> Optional[Dict[str, Any]]:
        typ, data = conn.uid("FETCH", uid, "(FLAGS BODY.PEEK[])")
        if typ != "OK":
            return None
        for item in data:
            if isinstance(item, tuple) and len(item) == 2:
                flags = _FLAGS_RE.search(item[0])
                return parse_message(uid, item[1], flags.group(1) if flags else b"", include_body)
        return None

    def _recent(self, conn: imaplib.IMAP4, mailbox: str, criteria: List[str], limit: int) -> List[Dict[str, Any]]:
        typ, _ = conn.select(_quote(mailbox), readonly=True)
        if typ != "OK":
            raise UpstreamAPIError(f"{self.error_prefix}: cannot open folder {mailbox}")
        typ, data = conn.uid("SEARCH", None, *criteria)
        if typ != "OK" or not data or not data[0]:
            return []
        uids = [u.decode() for u in data[0].split()][-limit:]
        messages = []
        for uid in reversed(uids):
            parsed = self._fetch(conn, uid, include_body=False)
            if parsed is not None:
                messages.append(parsed)
        return messages

    def _get(self, conn: imaplib.IMAP4, uid: str) -> Dict[str, Any]:
        conn.select("INBOX", readonly=True)
        parsed = self._fetch(conn, uid, include_body=True)
        if parsed is None:
            raise UpstreamAPIError(f"{self.error_prefix}: message {uid} not found", status_code=404)
        return parsed

    @staticmethod
    def _folders(conn: imaplib.IMAP4) -> List[Dict[str, Any]]:
        typ, data = conn.list()
        folders = []
        for line in data if typ == "OK" else []:
            if not isinstance(line, bytes):
                continue
            match = _LIST_RE.match(line.decode(errors="replace"))
            if not match:
                continue
            name = match.group("name").strip('"')
            counts = {"MESSAGES": 0, "UNSEEN": 0}
            if "\\Noselect" not in match.group("flags"):
                styp, sdata = conn.status(_quote(name), "(MESSAGES UNSEEN)")
                if styp == "OK" and sdata and isinstance(sdata[0], bytes):
                    for key, value in _STATUS_RE.findall(sdata[0].decode(errors="replace")):
                        counts[key] = int(value)
            folders.append(
                {
                    "id": name,
                    "name": name.rsplit(match.group("delim") or "/", 1)[-1],
                    "message_count": counts["MESSAGES"],
                    "unread_count": counts["UNSEEN"],
                }
            )
        return folders

    # ── Public API ──────────────────────────────────────────────────────

    async def search_emails(self, query: str, limit: int = 20) -> List[Dict[str, Any]]:
        criteria = ["TEXT", _quote(query)] if query else ["ALL"]
        return await self._run(self._recent, "INBOX", criteria, limit)

    async def get_email(self, message_id: str) -> Dict[str, Any]:
        return await self._run(self._get, message_id)

    async def list_folders(self) -> List[Dict[str, Any]]:
        return await self._run(self._folders)

    async def get_folder_emails(self, folder_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        return await self._run(self._recent, folder_id, ["ALL"], limit)

    async def test_connection(self) -> None:
        await self._run(lambda conn: conn.select("INBOX", readonly=True))

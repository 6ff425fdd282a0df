"""
Yahoo Mail tools — IMAP-backed search, read and folder listing.
"""

from __future__ import annotations

from typing import Any, Dict, List

from cache.engine import ConnectorCache
from connectors.yahoo import YahooMailClient
from tools import ToolDefinition, collect_tools, tool


def build_yahoo_tools(client: YahooMailClient, cache: ConnectorCache) -> List[ToolDefinition]:
    @tool(
        properties={
            "query": {"type": "string", "description": "Text to search in subject and body (empty for recent mail)"},
            "limit": {"type": "integer", "description": "Maximum number of results (default 20)"},
        },
    )
    async def yahoo_search_emails(query: str = "", limit: int = 20) -> List[Dict[str, Any]]:
        """Search emails in the Yahoo Mail inbox."""
        return await client.search_emails(query, limit)

    @tool(
        properties={"message_id": {"type": "string", "description": "The UID of the email message"}},
        required=["message_id"],
    )
    async def yahoo_get_email(message_id: str) -> Dict[str, Any]:
        """Get the full content of a specific inbox email by its UID."""
        return await client.get_email(message_id)

    @tool()
    async def yahoo_list_folders() -> List[Dict[str, Any]]:
        """List all Yahoo Mail folders with message and unread counts."""
        folders, _ = await cache.get("yahoo", "folders", client.list_folders)
        return folders

    @tool(
        properties={
            "folder_id": {"type": "string", "description": "Folder path (see yahoo_list_folders)"},
            "limit": {"type": "integer", "description": "Maximum number of results (default 20)"},
        },
        required=["folder_id"],
    )
    async def yahoo_get_folder_emails(folder_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        """Get the most recent emails in a folder."""
        return await client.get_folder_emails(folder_id, limit)

    return collect_tools(
        "yahoo",
        yahoo_search_emails,
        yahoo_get_email,
        yahoo_list_folders,
        yahoo_get_folder_emails,
    )

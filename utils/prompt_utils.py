"""
Shared prompt helpers
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, Sequence

_BASE_PROMPT = """You are a helpful AI assistant with access to the user's email, calendars, documents and file storage through configured connectors.

## Current Date

Today is {today}. Use this date when interpreting relative time references like "last 30 days", "this week" or "yesterday".

## Guidelines

1. **Use tools proactively**: when a question could be answered with real data, fetch it rather than speculating.
2. **Provide links**: include direct links (web_link, web_view_link, html_link) when the tools return them.
3. **Summarize intelligently**: when a tool returns a lot of data, summarize the key points and offer to dig deeper.
4. **Handle errors gracefully**: if a tool returns an error, explain what happened and suggest what the user can do (often reconnecting the connector in Settings → Connectors).
5. **Read-only access**: you cannot send, create, update or delete anything. Point the user to the right page instead.
6. **Be concise but thorough**: default to short answers and expand when asked."""


def build_system_prompt(
    connectors: Sequence[Dict[str, Any]],
    *,
    today: date | None = None,
) -> str:
    """
    Build the chat system prompt.

    Parameters
    ----------
    connectors : metadata dicts (``name``, ``type``, ``description``) of the
                 connectors whose tools are offered this turn.
    today      : override for tests.
    """
    today = today or date.today()
    parts = [_BASE_PROMPT.format(today=today.strftime("%A, %B %d, %Y"))]

    if connectors:
        listing = "\n".join(
            f"- **{c['name']}** ({c['type']}): {c['description']}" for c in connectors
        )
        parts.append(
            f"## Available Connectors\n\nYou have access to {len(connectors)} "
            f"connected service(s):\n\n{listing}"
        )
    else:
        parts.append(
            "## Available Connectors\n\nNo connectors are currently connected. "
            "The user can connect Gmail, Outlook, Yahoo Mail, Google Drive, Google Docs, "
            "Google Sheets or Google Calendar in Settings → Connectors."
        )
    return "\n\n".join(parts)


def title_prompt(first_message: str) -> str:
    return (
        "Generate a short, descriptive title (3-6 words) for a chat that starts with this message. "
        "Return ONLY the title, no quotes or extra text.\n\n"
        f'Message: "{first_message[:500]}"'
    )


def clean_title(text: str, *, max_length: int = 255) -> str:
    """Strip whitespace and one pair of surrounding quotes from a model title."""
    title = text.strip()
    if title[:1] in ("'", '"'):
        title = title[1:]
    if title[-1:] in ("'", '"'):
        title = title[:-1]
    return title.strip()[:max_length]

"""
Database helper functions — chats and their messages.

Callers own the session and the commit; helpers only ``flush`` so ids and
defaults are populated.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Chat, Message

logger = logging.getLogger(__name__)

DEFAULT_CHAT_TITLE = "New Chat"


async def create_chat(session: AsyncSession, title: str = DEFAULT_CHAT_TITLE) -> Chat:
    chat = Chat(title=title)
    session.add(chat)
    await session.flush()
    return chat


async def get_chat(session: AsyncSession, chat_id: str) -> Optional[Chat]:
    result = await session.execute(select(Chat).where(Chat.id == chat_id))
    return result.scalar_one_or_none()


async def load_history(session: AsyncSession, chat_id: str) -> List[Dict[str, str]]:
    """Return the chat's messages, oldest first, as ``{role, content}`` dicts."""
    result = await session.execute(
        select(Message.role, Message.content)
        .where(Message.chat_id == chat_id)
        .order_by(Message.created_at.asc())
    )
    return [{"role": role, "content": content} for role, content in result.all()]


async def count_user_messages(session: AsyncSession, chat_id: str) -> int:
    result = await session.execute(
        select(func.count(Message.id)).where(Message.chat_id == chat_id, Message.role == "user")
    )
    return int(result.scalar_one())


async def add_message(session: AsyncSession, chat_id: str, role: str, content: str) -> Message:
    message = Message(chat_id=chat_id, role=role, content=content)
    session.add(message)
    await session.execute(
        update(Chat).where(Chat.id == chat_id).values(updated_at=datetime.now(timezone.utc))
    )
    await session.flush()
    return message


async def set_chat_title(session: AsyncSession, chat_id: str, title: str) -> bool:
    result = await session.execute(update(Chat).where(Chat.id == chat_id).values(title=title))
    return result.rowcount > 0

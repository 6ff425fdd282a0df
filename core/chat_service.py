"""
ChatService — persists a chat turn around the tool dispatch loop.

Order of effects for one turn:
    1. user message committed (own session)
    2. tools resolved from healthy connectors, model streamed to the client
    3. only after the stream completes: the assistant message is inserted
       exactly once (own session)
    4. for a brand-new chat, title generation is submitted to the
       ``BackgroundTaskRunner``; it never affects the response

If the client disconnects mid-stream the generator is closed before step 3,
so no assistant row is written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cache.engine import ConnectorCache
from config.settings import Settings
from connectors.registry import ConnectorRegistry
from connectors.token_manager import OAuthLifecycleManager
from core.background import BackgroundTaskRunner
from core.dispatch import ToolDispatchLoop, TurnResult
from database.helpers import (
    DEFAULT_CHAT_TITLE,
    add_message,
    count_user_messages,
    create_chat,
    get_chat,
    load_history,
    set_chat_title,
)
from tools.registry import ToolRegistry, resolve_connector_tools
from utils.llm_providers import BaseLLMProvider
from utils.prompt_utils import build_system_prompt, clean_title, title_prompt

logger = logging.getLogger(__name__)

STREAM_ERROR_REPLY = "\n\nSorry, something went wrong while generating the response."


class ChatNotFoundError(LookupError):
    pass


@dataclass
class ChatTurn:
    chat_id: str
    user_message_id: str
    stream: AsyncIterator[str]


class ChatService:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        registry: ConnectorRegistry,
        manager: OAuthLifecycleManager,
        cache: ConnectorCache,
        llm: BaseLLMProvider,
        runner: BackgroundTaskRunner,
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.manager = manager
        self.cache = cache
        self.llm = llm
        self.runner = runner
        self.settings = settings

    async def start_turn(self, chat_id: Optional[str], message: str) -> ChatTurn:
        """
        Commit the user message and return a handle whose ``stream`` yields
        the assistant's text.

        Raises
        ------
        ChatNotFoundError – ``chat_id`` given but unknown
        """
        async with self.session_factory() as session:
            if chat_id:
                chat = await get_chat(session, chat_id)
                if chat is None:
                    raise ChatNotFoundError(f"Chat {chat_id} not found")
            else:
                chat = await create_chat(session)
            history = await load_history(session, chat.id)
            needs_title = (
                chat.title == DEFAULT_CHAT_TITLE
                and await count_user_messages(session, chat.id) == 0
            )
            user_message = await add_message(session, chat.id, "user", message)
            await session.commit()
            resolved_chat_id, user_message_id = chat.id, user_message.id

        tools = await resolve_connector_tools(self.registry, self.manager, self.cache)
        loop = ToolDispatchLoop(
            self.llm,
            max_steps=self.settings.max_tool_steps,
            system_prompt=build_system_prompt(self._connector_metadata(tools)),
            temperature=self.settings.llm_temperature,
        )
        logger.info(
            "Chat %s: turn started (history=%d tools=%d)",
            resolved_chat_id,
            len(history),
            len(tools),
        )
        return ChatTurn(
            chat_id=resolved_chat_id,
            user_message_id=user_message_id,
            stream=self._stream(loop, resolved_chat_id, history, message, tools, needs_title),
        )

    def _connector_metadata(self, tools: ToolRegistry) -> List[Dict[str, Any]]:
        types = {tools.get_tool(name).connector_type for name in tools.list_tools()}
        return [d.metadata() for d in self.registry.all() if d.type in types]

    async def _stream(
        self,
        loop: ToolDispatchLoop,
        chat_id: str,
        history: List[Dict[str, str]],
        message: str,
        tools: ToolRegistry,
        needs_title: bool,
    ) -> AsyncIterator[str]:
        turn = TurnResult()
        try:
            async for delta in loop.stream_turn(history, message, tools, turn):
                yield delta
        except Exception:
            logger.exception("Chat %s: model stream failed", chat_id)
            yield STREAM_ERROR_REPLY
            return

        async with self.session_factory() as session:
            await add_message(session, chat_id, "assistant", turn.text)
            await session.commit()

        if needs_title:
            self.runner.submit(f"chat-title:{chat_id}", self.generate_title(chat_id, message))

    async def generate_title(self, chat_id: str, first_message: str) -> Optional[str]:
        """Ask the model for a short title; errors propagate to the runner."""
        text = await self.llm.generate(
            title_prompt(first_message),
            model=self.settings.title_model or None,
            max_tokens=30,
        )
        title = clean_title(text)
        if not title:
            return None
        async with self.session_factory() as session:
            await set_chat_title(session, chat_id, title)
            await session.commit()
        logger.info("Chat %s titled %r", chat_id, title)
        return title

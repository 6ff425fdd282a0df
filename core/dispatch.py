"""
ToolDispatchLoop — one assistant turn with bounded tool calling.

Each step is one streamed model call.  Text deltas are passed straight
through to the caller; tool calls requested in that step are executed in
order and their results (or ``{"error": ...}``) are appended to the
in-turn context for the next step.  The model is called at most
``max_steps`` times, so a model that keeps asking for tools still
terminates; the turn then finalizes with whatever text was produced.

Nothing here touches the database; ``ChatService`` persists the final text.
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from connectors.errors import ConnectorError
from tools.registry import ToolRegistry
from utils.llm_providers import BaseLLMProvider, TextDelta, ToolCall

logger = logging.getLogger(__name__)

TRUNCATED_REPLY = (
    "I reached the limit of {max_steps} tool-calling steps before I could finish "
    "answering. Please narrow the request or ask me to continue."
)
EMPTY_REPLY = "I wasn't able to produce a response for that request. Please try rephrasing it."


@dataclass
class ToolInvocationRound:
    step_index: int
    tool_name: str
    arguments: Dict[str, Any]
    result: Any = None
    error: Optional[str] = None

    def payload(self) -> Any:
        return {"error": self.error} if self.error is not None else self.result


@dataclass
class TurnResult:
    text: str = ""
    rounds: List[ToolInvocationRound] = field(default_factory=list)
    steps: int = 0
    truncated: bool = False


class ToolDispatchLoop:
    def __init__(
        self,
        llm: BaseLLMProvider,
        *,
        max_steps: int = 5,
        system_prompt: str = "",
        temperature: float = 0.3,
        model: str | None = None,
    ):
        if max_steps < 1:
            raise ValueError("max_steps must be at least 1")
        self.llm = llm
        self.max_steps = max_steps
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.model = model

    async def run_turn(
        self,
        history: Sequence[Dict[str, Any]],
        user_message: str,
        tools: ToolRegistry,
    ) -> TurnResult:
        turn = TurnResult()
        async for _ in self.stream_turn(history, user_message, tools, turn):
            pass
        return turn

    async def stream_turn(
        self,
        history: Sequence[Dict[str, Any]],
        user_message: str,
        tools: ToolRegistry,
        turn: TurnResult | None = None,
    ) -> AsyncIterator[str]:
        """
        Yield text deltas as the model produces them.

        ``turn`` is filled in as the loop runs; it is complete once the
        iterator is exhausted.
        """
        turn = turn if turn is not None else TurnResult()
        messages: List[Dict[str, Any]] = list(history)
        messages.append({"role": "user", "content": user_message})
        schemas = tools.schemas()
        produced: List[str] = []
        finished = False

        while turn.steps < self.max_steps:
            turn.steps += 1
            step_text: List[str] = []
            calls: List[ToolCall] = []

            async for event in self.llm.stream_chat(
                messages,
                system=self.system_prompt,
                tools=schemas,
                temperature=self.temperature,
                model=self.model,
            ):
                if isinstance(event, TextDelta):
                    step_text.append(event.text)
                    produced.append(event.text)
                    yield event.text
                else:
                    calls.append(event)

            messages.append({"role": "assistant", "content": "".join(step_text), "tool_calls": calls})
            if not calls:
                finished = True
                break

            for call in calls:
                invocation = await self._invoke(turn.steps, call, tools)
                turn.rounds.append(invocation)
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.id,
                        "name": call.name,
                        "content": json.dumps(invocation.payload(), default=str),
                    }
                )

        turn.truncated = not finished
        if turn.truncated:
            logger.warning("Tool loop hit the %d-step limit", self.max_steps)

        text = "".join(produced)
        if not text.strip():
            text = (
                TRUNCATED_REPLY.format(max_steps=self.max_steps)
                if turn.truncated
                else EMPTY_REPLY
            )
            yield text
        turn.text = text
        logger.info(
            "Turn finished: steps=%d tool_calls=%d truncated=%s",
            turn.steps,
            len(turn.rounds),
            turn.truncated,
        )

    async def _invoke(self, step_index: int, call: ToolCall, tools: ToolRegistry) -> ToolInvocationRound:
        invocation = ToolInvocationRound(step_index=step_index, tool_name=call.name, arguments=call.arguments)
        if call.argument_error:
            invocation.error = call.argument_error
            return invocation
        try:
            definition = tools.get_tool(call.name)
        except ValueError as exc:
            invocation.error = str(exc)
            return invocation

        try:
            bound = inspect.signature(definition.handler).bind(**call.arguments)
        except TypeError as exc:
            invocation.error = f"Invalid arguments for {call.name}: {exc}"
            return invocation

        try:
            invocation.result = await definition.handler(*bound.args, **bound.kwargs)
        except ConnectorError as exc:
            invocation.error = str(exc)
        except Exception as exc:
            # a broken tool must not take the whole turn down
            logger.exception("Tool %s raised", call.name)
            invocation.error = f"{type(exc).__name__}: {exc}"

        logger.info(
            "Tool %s (step %d) → %s",
            call.name,
            step_index,
            "error" if invocation.error else "ok",
        )
        return invocation

"""Tool-calling answering agent over the document retriever.

One run per chat request moves through these states::

    IDLE -> REASONING -> (TOOL_CALL -> REASONING)* -> ANSWERED | FAILED

Each REASONING step is one chat completion with the retriever exposed as a
function tool. The run ends at the first non-empty assistant message.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from openai import OpenAI

from .config import config
from .errors import GenerationFailed

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from .models import DocumentChunk
    from .retrieval import Retriever

logger = config.get_logger(__name__)

NO_RESPONSE_FALLBACK = "No response from the agent."
TOOL_LIMIT_MESSAGE = "Tool call limit reached. Answer with the context you have."

RETRIEVER_TOOL_NAME = "talk_with_data"
RETRIEVER_TOOL_DESCRIPTION = (
    "Search the uploaded document and return the passages most relevant to "
    "the query. Use it to recall what the document says before answering."
)

SYSTEM_PROMPT = (
    "You are a virtual assistant who recalls conversations stored in the "
    "uploaded document. Use the talk_with_data tool to look up the document, "
    "then provide concise and accurate answers based on its content. If the "
    "document does not contain the answer, say so."
)


class AgentState(str, Enum):
    """Lifecycle of a single agent run."""

    IDLE = "idle"
    REASONING = "reasoning"
    TOOL_CALL = "tool_call"
    ANSWERED = "answered"
    FAILED = "failed"


@dataclass
class AgentEvent:
    """One step emitted by ``AnsweringAgent.stream``.

    For TOOL_CALL events ``content`` is the tool output handed back to the
    model; for ANSWERED events it is the final answer.
    """

    state: AgentState
    content: str | None = None
    tool_name: str | None = None
    tool_query: str | None = None
    contexts: list[tuple[DocumentChunk, float]] = field(default_factory=list)


@dataclass
class AgentResult:
    """Outcome of a complete agent run."""

    answer: str
    state: AgentState
    tool_calls: int = 0
    retrieved_contexts: list[tuple[DocumentChunk, float]] = field(
        default_factory=list
    )
    fallback: bool = False


class AnsweringAgent:
    """Answers prompts with a hosted chat model and the retriever tool."""

    def __init__(  # noqa: PLR0913
        self,
        retriever: Retriever,
        openai_api_key: str | None = None,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        max_tool_calls: int | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the agent.

        Args:
            retriever: Retriever invoked by the ``talk_with_data`` tool.
            openai_api_key: OpenAI API key.
            model: Chat model name. If None, uses config.CHAT_MODEL.
            temperature: Sampling temperature. If None, uses
                config.CHAT_TEMPERATURE.
            max_tokens: Completion token limit. If None, uses
                config.CHAT_MAX_TOKENS.
            max_tool_calls: Tool calls allowed per run. If None, uses
                config.AGENT_MAX_TOOL_CALLS.
            timeout: Seconds allowed per completion. If None, uses
                config.CHAT_TIMEOUT.
        """
        self.retriever = retriever
        self.model = model or config.CHAT_MODEL
        self.temperature = (
            temperature if temperature is not None else config.CHAT_TEMPERATURE
        )
        self.max_tokens = max_tokens or config.CHAT_MAX_TOKENS
        if max_tool_calls is None:
            max_tool_calls = config.AGENT_MAX_TOOL_CALLS
        self.max_tool_calls = max_tool_calls
        self.timeout = timeout if timeout is not None else config.CHAT_TIMEOUT

        default_headers = config.get_api_headers()
        self.client = OpenAI(
            api_key=openai_api_key or config.get_openai_api_key(),
            base_url=config.OPENAI_BASE_URL,
            default_headers=default_headers or None,
            timeout=self.timeout,
            max_retries=0,
        )

    @staticmethod
    def tool_schema() -> dict[str, Any]:
        """OpenAI function-tool definition of the retriever."""
        return {
            "type": "function",
            "function": {
                "name": RETRIEVER_TOOL_NAME,
                "description": RETRIEVER_TOOL_DESCRIPTION,
                "parameters": {
                    "type": "object",
                    "properties": {
                        "query": {
                            "type": "string",
                            "description": "What to look up in the document.",
                        },
                    },
                    "required": ["query"],
                },
            },
        }

    @staticmethod
    def format_results(results: list[tuple[DocumentChunk, float]]) -> str:
        """Render retrieved chunks as the tool output.

        Returns:
            Numbered passages with source and similarity.
        """
        if not results:
            return "No relevant passages found in the uploaded document."

        return "\n\n".join(
            f"[{i + 1}] (source: {chunk.metadata.get('source', 'unknown')}, "
            f"similarity: {score:.4f})\n{chunk.content}"
            for i, (chunk, score) in enumerate(results)
        )

    @staticmethod
    def build_messages(
        prompt: str,
        history: Sequence[dict[str, str]] = (),
    ) -> list[dict[str, Any]]:
        """Assemble the system prompt, prior turns and the user prompt.

        Returns:
            Chat messages for the first completion.
        """
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            *history,
            {"role": "user", "content": prompt},
        ]

    @staticmethod
    def _parse_query(arguments: str | None, fallback: str) -> str:
        try:
            parsed = json.loads(arguments or "{}")
        except json.JSONDecodeError:
            logger.warning("Unparseable tool arguments: %s", arguments)
            return fallback
        query = parsed.get("query") if isinstance(parsed, dict) else None
        if isinstance(query, str) and query.strip():
            return query.strip()
        return fallback

    @staticmethod
    def _assistant_message(message: Any, tool_calls: list[Any]) -> dict[str, Any]:
        return {
            "role": "assistant",
            "content": message.content,
            "tool_calls": [
                {
                    "id": tool_call.id,
                    "type": "function",
                    "function": {
                        "name": tool_call.function.name,
                        "arguments": tool_call.function.arguments,
                    },
                }
                for tool_call in tool_calls
            ],
        }

    async def _complete(
        self,
        messages: list[dict[str, Any]],
        *,
        allow_tools: bool,
    ) -> Any:
        """Run one chat completion off the event loop.

        Returns:
            The first choice's message, or None if the model returned none.

        Raises:
            GenerationFailed: If the call errors or exceeds the timeout.
        """
        request: dict[str, Any] = {
            "model": self.model,
            "messages": list(messages),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if allow_tools:
            request["tools"] = [self.tool_schema()]

        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(self.client.chat.completions.create, **request),
                timeout=self.timeout,
            )
        except TimeoutError as e:
            logger.exception("Chat completion timed out after %.1fs", self.timeout)
            msg = f"Hosted model did not respond within {self.timeout:.0f}s"
            raise GenerationFailed(msg, original_error=e) from e
        except Exception as e:
            logger.exception("Error generating chat completion")
            msg = "Hosted model call failed"
            raise GenerationFailed(msg, original_error=e) from e

        if not response.choices:
            return None
        return response.choices[0].message

    async def _call_tool(self, tool_call: Any, prompt: str) -> AgentEvent:
        name = tool_call.function.name
        if name != RETRIEVER_TOOL_NAME:
            logger.warning("Model requested unknown tool %s", name)
            return AgentEvent(
                AgentState.TOOL_CALL,
                content=f"Error: Tool {name} not found",
                tool_name=name,
            )

        query = self._parse_query(tool_call.function.arguments, fallback=prompt)
        logger.info("Tool call: %s(%s)", name, query)
        try:
            results = await asyncio.to_thread(self.retriever.search, query)
        except Exception as e:
            logger.exception("Retriever tool failed")
            msg = "Retriever tool failed"
            raise GenerationFailed(msg, original_error=e) from e

        return AgentEvent(
            AgentState.TOOL_CALL,
            content=self.format_results(results),
            tool_name=name,
            tool_query=query,
            contexts=results,
        )

    async def stream(
        self,
        prompt: str,
        history: Sequence[dict[str, str]] = (),
    ) -> AsyncIterator[AgentEvent]:
        """Run the agent, yielding an event per state transition.

        The stream ends right after the first ANSWERED event, or without one
        when the model returns nothing usable.

        Raises:
            GenerationFailed: If a completion or a tool call fails.
        """
        messages = self.build_messages(prompt, history)
        tool_calls_made = 0

        try:
            while True:
                allow_tools = tool_calls_made < self.max_tool_calls
                yield AgentEvent(AgentState.REASONING)

                message = await self._complete(messages, allow_tools=allow_tools)
                if message is None:
                    return

                tool_calls = list(message.tool_calls or []) if allow_tools else []
                if tool_calls:
                    messages.append(self._assistant_message(message, tool_calls))
                    for tool_call in tool_calls:
                        if tool_calls_made >= self.max_tool_calls:
                            event = AgentEvent(
                                AgentState.TOOL_CALL,
                                content=TOOL_LIMIT_MESSAGE,
                                tool_name=tool_call.function.name,
                            )
                        else:
                            event = await self._call_tool(tool_call, prompt)
                            tool_calls_made += 1
                        messages.append({
                            "role": "tool",
                            "tool_call_id": tool_call.id,
                            "content": event.content,
                        })
                        yield event
                    continue

                content = (message.content or "").strip()
                if content:
                    yield AgentEvent(AgentState.ANSWERED, content=content)
                return
        except GenerationFailed:
            logger.error("Agent run entered %s state", AgentState.FAILED.value)
            raise

    async def run(
        self,
        prompt: str,
        history: Sequence[dict[str, str]] = (),
    ) -> AgentResult:
        """Run the agent and take the first final answer.

        Returns:
            AgentResult with the answer, or the fallback answer when the
            agent never produced one.
        """
        state = AgentState.IDLE
        tool_calls = 0
        contexts: list[tuple[DocumentChunk, float]] = []

        async with aclosing(self.stream(prompt, history)) as events:
            async for event in events:
                state = event.state
                if event.state is AgentState.TOOL_CALL:
                    tool_calls += 1
                    contexts.extend(event.contexts)
                elif event.state is AgentState.ANSWERED and event.content:
                    return AgentResult(
                        answer=event.content,
                        state=AgentState.ANSWERED,
                        tool_calls=tool_calls,
                        retrieved_contexts=contexts,
                    )

        logger.warning("Agent produced no final answer; using fallback")
        return AgentResult(
            answer=NO_RESPONSE_FALLBACK,
            state=state,
            tool_calls=tool_calls,
            retrieved_contexts=contexts,
            fallback=True,
        )

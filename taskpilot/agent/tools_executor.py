"""
Tool Executor
=============

Turns the model's proposed tool calls into operation results.

The executor:
1. Parses tool calls from the selection message
2. Sanitizes arguments (top-level nulls are dropped)
3. Runs every call concurrently against the operation registry
4. Formats results as `tool` messages for the composition call

Isolation:
    Each call is parsed and executed on its own. A call whose arguments are
    not valid JSON fails alone; its siblings still run. execute_all() always
    returns one result per call, in call order, and never raises.

    Selection message
         │
         ▼
    parse_tool_calls ──► [ToolCall, ToolCall(parse_error), ...]
         │
         ▼
    execute_all (asyncio.gather)
         │
         ▼
    [ToolCallResult, ToolCallResult, ...]  (same order)
"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from taskpilot.store.base import TaskStore
from taskpilot.tools import OperationContext, ToolRegistry, ToolResult
from taskpilot.utils.config import AssistantConfig
from taskpilot.utils.dates import utc_now
from taskpilot.utils.logger import Logger

logger = Logger("ToolExecutor")


@dataclass
class ToolCall:
    """
    A parsed tool call from the model.

    Attributes:
        id: The tool call ID (for matching results)
        name: The operation name as proposed by the model
        arguments: Sanitized arguments dict
        parse_error: Set when the argument string was not a JSON object
    """
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    parse_error: str | None = None


@dataclass
class ToolCallResult:
    """
    Result of executing a tool call.

    Attributes:
        tool_call_id: The original tool call ID
        name: The operation name
        arguments: The arguments the call ran with
        result: The operation result
    """
    tool_call_id: str
    name: str
    arguments: dict[str, Any]
    result: ToolResult

    def to_openai_message(self) -> dict:
        """Format as a tool result message for the chat completions API."""
        return {
            "role": "tool",
            "tool_call_id": self.tool_call_id,
            "content": self.result.to_message()
        }

    def to_dict(self) -> dict:
        return {
            "tool_call_id": self.tool_call_id,
            "name": self.name,
            "arguments": self.arguments,
            **self.result.to_dict(),
        }


@dataclass
class Selection:
    """
    What the model decided for one message.

    Attributes:
        direct_reply: Text content of the selection message
        invocations: Parsed tool calls; empty for smalltalk
        message: The selection message in chat completions format, to be
            replayed before the tool results
    """
    direct_reply: str | None
    invocations: list[ToolCall]
    message: dict

    @property
    def is_smalltalk(self) -> bool:
        return not self.invocations


def sanitize_arguments(arguments: dict[str, Any]) -> dict[str, Any]:
    """Drop top-level keys whose value is None; keep everything else as is."""
    return {key: value for key, value in arguments.items() if value is not None}


def parse_tool_calls(message: Any) -> list[ToolCall]:
    """
    Parse tool calls from a chat completion message.

    Args:
        message: The selection message (ChatCompletionMessage)

    Returns:
        One ToolCall per proposed call, in order
    """
    tool_calls = []

    for tc in message.tool_calls or []:
        try:
            arguments = json.loads(tc.function.arguments or "{}")
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse arguments for {tc.function.name}: {e}")
            tool_calls.append(ToolCall(id=tc.id, name=tc.function.name, parse_error=str(e)))
            continue

        if not isinstance(arguments, dict):
            tool_calls.append(ToolCall(
                id=tc.id,
                name=tc.function.name,
                parse_error=f"expected a JSON object, got {type(arguments).__name__}",
            ))
            continue

        tool_calls.append(ToolCall(
            id=tc.id,
            name=tc.function.name,
            arguments=sanitize_arguments(arguments),
        ))

    logger.debug(f"Parsed {len(tool_calls)} tool calls")
    return tool_calls


def to_selection(message: Any) -> Selection:
    """Wrap a selection message with its parsed invocations."""
    return Selection(
        direct_reply=message.content,
        invocations=parse_tool_calls(message),
        message=message.model_dump(exclude_none=True),
    )


class ToolExecutor:
    """
    Executes the operations the model selected.

    Example:
        executor = ToolExecutor(tool_registry, store, inference=inference)

        selection = to_selection(message)
        results = await executor.execute_all(selection.invocations, user_id)

        for result in results:
            messages.append(result.to_openai_message())
    """

    def __init__(
        self,
        registry: ToolRegistry,
        store: TaskStore,
        inference=None,
        settings: AssistantConfig | None = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.registry = registry
        self.store = store
        self.inference = inference
        self.settings = settings or AssistantConfig()
        self.clock = clock

    def _context(self, user_id: str) -> OperationContext:
        return OperationContext(
            user_id=user_id,
            store=self.store,
            settings=self.settings,
            inference=self.inference,
            clock=self.clock,
        )

    async def execute_one(self, tool_call: ToolCall, user_id: str) -> ToolCallResult:
        """
        Execute a single tool call. Never raises.

        Args:
            tool_call: The parsed call
            user_id: The verified user the call acts for

        Returns:
            ToolCallResult with the execution result
        """
        if tool_call.parse_error is not None:
            result = ToolResult(success=False, error=f"Invalid tool arguments: {tool_call.parse_error}")
        else:
            logger.info(f"Executing tool: {tool_call.name}")
            result = await self.registry.execute(tool_call.name, tool_call.arguments, self._context(user_id))

        if result.success:
            logger.debug(f"Tool {tool_call.name} succeeded")
        else:
            logger.warning(f"Tool {tool_call.name} failed: {result.error}")

        return ToolCallResult(
            tool_call_id=tool_call.id,
            name=tool_call.name,
            arguments=tool_call.arguments,
            result=result
        )

    async def execute_all(self, tool_calls: list[ToolCall], user_id: str) -> list[ToolCallResult]:
        """
        Execute tool calls concurrently.

        Results are returned in the same order as inputs.
        """
        results = await asyncio.gather(*(self.execute_one(tc, user_id) for tc in tool_calls))
        return list(results)

"""
Assistant Core
==============

The orchestrator that turns one inbound message into a reply.

    User Message
         │
         ▼
    Validate request + verify user ──► InvalidRequestError / InvalidUserError
         │
         ▼
    Assemble Context (preamble + last K turns + message)
         │
         ▼
    Selection call (tools, temperature 0)
         │
    ┌─── Has Tool Calls? ───┐
    │                       │
    Yes                     No
    │                       │
    ▼                       ▼
    Execute all calls       Reply with the model's text
    (concurrently)
    │
    ▼
    Composition call (no tools, temperature 0.7)
    │
    ▼
    Reply + structured response of the first successful call

Unlike an open-ended agent loop there is exactly one round of tool calls per
message: the composition call is made without tools.

Failure containment:
- a failing invocation becomes a failed result; its siblings still run
- a failing composition call gives the reply "Action completed."
- a failing selection call (or history read) gives a generic apology
- conversation turns are written in the background after the reply is
  ready; a failed write is logged and never affects the reply
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from taskpilot.agent.context import ContextAssembler
from taskpilot.agent.formatter import StructuredFormatter, StructuredResponse
from taskpilot.agent.llm import InferenceClient
from taskpilot.agent.tools_executor import ToolCallResult, ToolExecutor, to_selection
from taskpilot.errors import (
    InferenceError,
    InvalidRequestError,
    InvalidUserError,
    StoreError,
)
from taskpilot.store.base import (
    ROLE_ASSISTANT,
    ROLE_USER,
    ConversationStore,
    ConversationTurn,
    IdentityProvider,
    TaskStore,
)
from taskpilot.tools import ToolRegistry, load_operations
from taskpilot.utils.config import AssistantConfig, Config
from taskpilot.utils.dates import utc_now
from taskpilot.utils.logger import Logger

logger = Logger("Assistant")

ERROR_REPLY = "Sorry, I encountered an error processing your request."
EMPTY_REPLY = "Sorry, I couldn't generate a response."
COMPOSE_FALLBACK_REPLY = "Action completed."

# Number of turns returned by load_messages()
HISTORY_PAGE_SIZE = 100


@dataclass
class SendMessageResult:
    """
    What the assistant returns for one message.

    Attributes:
        reply: Natural-language reply
        structured_response: Payload of the first successful invocation, if any
        optional_data: Per-invocation results and structured-output metadata
    """
    reply: str
    structured_response: dict | None = None
    optional_data: dict | None = None

    def to_dict(self) -> dict:
        return {
            "reply": self.reply,
            "structured_response": self.structured_response,
            "optional_data": self.optional_data,
        }


class TaskAssistant:
    """
    Handles inbound messages for verified users.

    All collaborators are passed in, so tests can use InMemoryStore and a
    scripted model client.

    Example:
        store = create_store(config)
        assistant = TaskAssistant(
            store=store,
            conversations=store,
            identity=store,
            inference=InferenceClient.from_config(config),
            settings=config.assistant,
        )

        result = await assistant.send_message("user-1", "Add a task to buy groceries")
        print(result.reply)
    """

    def __init__(
        self,
        store: TaskStore,
        conversations: ConversationStore,
        identity: IdentityProvider,
        inference: InferenceClient,
        settings: AssistantConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
        registry: ToolRegistry | None = None
    ):
        self.settings = settings or AssistantConfig()
        self.store = store
        self.conversations = conversations
        self.identity = identity
        self.inference = inference
        self.registry = registry or load_operations()

        self.context_assembler = ContextAssembler(
            conversations,
            window=self.settings.conversation_window,
            clock=clock,
            tools=self.registry.get_openai_functions(),
        )
        self.tool_executor = ToolExecutor(
            self.registry,
            store,
            inference=inference,
            settings=self.settings,
            clock=clock,
        )
        self.formatter = StructuredFormatter(
            strategy=self.settings.structured_strategy,
            strict=self.settings.strict_structured_output,
            inference=inference,
        )

        # Background conversation writes; held so they are not garbage collected
        self._pending: set[asyncio.Task] = set()

        logger.info(f"Assistant initialized with {len(self.registry.list_names())} operations")

    @classmethod
    def from_config(cls, config: Config, store=None) -> "TaskAssistant":
        """Build an assistant whose three collaborators are one store object."""
        from taskpilot.store import create_store

        store = store or create_store(config)
        return cls(
            store=store,
            conversations=store,
            identity=store,
            inference=InferenceClient.from_config(config),
            settings=config.assistant,
        )

    # ==========================================================================
    # Inbound messages
    # ==========================================================================

    async def _verify_user(self, user_id: str):
        try:
            profile = await self.identity.get_profile(user_id)
        except StoreError as e:
            logger.error(f"Identity lookup failed for {user_id}", e)
            raise InvalidUserError("Invalid user") from e

        if profile is None:
            raise InvalidUserError("Invalid user")
        return profile

    async def send_message(self, user_id: str, message: str) -> SendMessageResult:
        """
        Process a user message and return the reply.

        Args:
            user_id: Identity-provider user id
            message: Free-text message

        Returns:
            SendMessageResult

        Raises:
            InvalidRequestError: If user_id or message is missing or blank
            InvalidUserError: If the user id cannot be verified
            StructuredOutputError: Only in strict structured-output mode
        """
        if not user_id or not user_id.strip() or not message or not message.strip():
            raise InvalidRequestError("user_id and message are required")

        profile = await self._verify_user(user_id)
        logger.info(f"Processing message from {user_id}: {message[:50]}")

        try:
            context = await self.context_assembler.assemble(user_id, message, profile)
            selection = to_selection(
                await self.inference.select(context.to_openai_messages(), context.tools)
            )
        except (InferenceError, StoreError) as e:
            logger.error("Selection failed", e)
            result = SendMessageResult(reply=ERROR_REPLY)
            self._record_turns(user_id, message, result.reply)
            return result

        if selection.is_smalltalk:
            reply = (selection.direct_reply or "").strip() or EMPTY_REPLY
            result = SendMessageResult(reply=reply)
            self._record_turns(user_id, message, reply)
            return result

        results = await self.tool_executor.execute_all(selection.invocations, user_id)

        messages = context.to_openai_messages()
        messages.append(selection.message)
        messages.extend(r.to_openai_message() for r in results)
        reply = await self._compose_reply(messages)

        structured = await self._structure(results)
        optional_data: dict[str, Any] = {"tool_results": [r.to_dict() for r in results]}
        if structured is not None:
            optional_data["structured"] = {
                "operation": structured.operation,
                "validated": structured.validated,
                "error": structured.error,
            }

        result = SendMessageResult(
            reply=reply,
            structured_response=structured.data if structured else None,
            optional_data=optional_data,
        )
        self._record_turns(user_id, message, reply)
        logger.info(f"Generated response ({len(reply)} chars, {len(results)} tool call(s))")
        return result

    async def _compose_reply(self, messages: list[dict]) -> str:
        try:
            reply = await self.inference.compose(messages)
        except InferenceError as e:
            logger.warning(f"Composition failed, using fallback reply: {e}")
            return COMPOSE_FALLBACK_REPLY
        return reply.strip() or COMPOSE_FALLBACK_REPLY

    async def _structure(self, results: list[ToolCallResult]) -> StructuredResponse | None:
        """Structured response of the first successful invocation."""
        for call_result in results:
            if call_result.result.success:
                return await self.formatter.structure(call_result.name, call_result.result.data)
        return None

    # ==========================================================================
    # Conversation log
    # ==========================================================================

    def _record_turns(self, user_id: str, message: str, reply: str) -> None:
        task = asyncio.create_task(self._write_turns(user_id, message, reply))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write_turns(self, user_id: str, message: str, reply: str) -> None:
        try:
            await self.conversations.append_turn(user_id, ROLE_USER, message)
            await self.conversations.append_turn(user_id, ROLE_ASSISTANT, reply)
        except StoreError as e:
            logger.error(f"Failed to store conversation turns for {user_id}", e)

    async def drain(self) -> None:
        """Wait for pending background writes (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def load_messages(self, user_id: str, limit: int = HISTORY_PAGE_SIZE) -> list[ConversationTurn]:
        """
        Return the user's most recent conversation turns, oldest first.

        Raises:
            InvalidRequestError: If user_id is blank
            StoreError: If the conversation store fails
        """
        if not user_id or not user_id.strip():
            raise InvalidRequestError("user_id is required")
        return await self.conversations.recent_turns(user_id, limit)

    def list_operations(self) -> list[dict]:
        return self.registry.list_operations()

    async def close(self) -> None:
        await self.drain()
        await self.inference.close()
        closer = getattr(self.store, "close", None)
        if closer is not None:
            await closer()

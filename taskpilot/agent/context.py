"""
Context Assembly
================

Builds the message list for the selection call:

    [system preamble] + [last K turns, oldest first] + [new user message]

The system preamble is rebuilt on every call. It states the assistant's
role, the current UTC time (from an injectable clock, so tests can pin it)
and, when known, the user's first name.

K is CONVERSATION_WINDOW (default 30) and is a hard cap: older turns are
never sent, however short they are.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from taskpilot.store.base import ConversationStore, UserProfile
from taskpilot.utils.dates import utc_now
from taskpilot.utils.logger import Logger

logger = Logger("Context")


@dataclass
class AssembledContext:
    """
    The context for one selection call.

    Attributes:
        system_message: Preamble with role, timestamp and user name
        messages: Conversation history plus the new user message
        tools: Operation catalog in chat completions format
    """
    system_message: str
    messages: list[dict]
    tools: list[dict] = field(default_factory=list)

    def to_openai_messages(self) -> list[dict]:
        """Format as messages for the chat completions API."""
        result = [{"role": "system", "content": self.system_message}]
        result.extend(self.messages)
        return result


class ContextAssembler:
    """
    Assembles context for model requests.

    Example:
        assembler = ContextAssembler(store, window=30)

        context = await assembler.assemble("user-1", "What is due this week?", profile)
        message = await inference.select(context.to_openai_messages(), context.tools)
    """

    BASE_SYSTEM_PROMPT = (
        "You are a helpful daily planner assistant{for_user}. Use the available "
        "tools to help the user manage tasks and schedules, and ask for "
        "clarification when required information is missing. "
        "Current date: {now}. Be concise and friendly."
    )

    def __init__(
        self,
        conversations: ConversationStore,
        window: int = 30,
        clock: Callable[[], datetime] = utc_now,
        tools: list[dict] | None = None
    ):
        """
        Args:
            conversations: Where past turns are read from
            window: Maximum number of past turns included
            clock: Returns the current aware UTC time
            tools: Catalog to attach to every assembled context
        """
        self.conversations = conversations
        self.window = window
        self.clock = clock
        self.tools = tools or []

    def build_system_message(self, profile: UserProfile | None = None) -> str:
        name = profile.display_name if profile else None
        return self.BASE_SYSTEM_PROMPT.format(
            for_user=f" for {name}" if name else "",
            now=self.clock().isoformat(),
        )

    async def assemble(
        self,
        user_id: str,
        user_message: str,
        profile: UserProfile | None = None
    ) -> AssembledContext:
        """
        Assemble the context for one inbound message.

        Args:
            user_id: The verified user
            user_message: The new message text
            profile: Identity profile, used for the user's name

        Returns:
            AssembledContext ready for the selection call

        Raises:
            StoreError: If the conversation history cannot be read
        """
        turns = await self.conversations.recent_turns(user_id, self.window)
        history = [turn.to_message() for turn in turns[-self.window:]] if self.window > 0 else []
        history.append({"role": "user", "content": user_message})

        logger.debug(f"Assembled context for {user_id} with {len(history) - 1} past turn(s)")
        return AssembledContext(
            system_message=self.build_system_message(profile),
            messages=history,
            tools=list(self.tools),
        )

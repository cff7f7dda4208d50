"""
Inference Client
================

Thin wrapper around the OpenAI-compatible chat completions API.

The assistant talks to the model in three ways:

1. select()        - with tools, temperature 0, tool_choice "auto":
                     the model either answers directly or proposes calls
2. compose()       - no tools, temperature 0.7: the final reply after
                     operation results are known
3. complete_json() - structured output constrained to a JSON Schema

Any provider is fine as long as it speaks the chat completions protocol;
the default base URL points at Groq. Timeouts and retries of transient
failures are handled by the openai client itself (LLM_TIMEOUT_SECONDS,
LLM_MAX_RETRIES).
"""

import json
from typing import Any

from openai import APIError, AsyncOpenAI
from openai.types.chat import ChatCompletionMessage

from taskpilot.errors import InferenceError
from taskpilot.utils.config import Config
from taskpilot.utils.logger import Logger

logger = Logger("Inference")


class InferenceClient:
    """
    Chat completions with the three call shapes the assistant needs.

    Example:
        inference = InferenceClient.from_config(get_config())

        message = await inference.select(messages, tools)
        if message.tool_calls:
            ...
        reply = await inference.compose(messages)
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        selection_temperature: float = 0.0,
        composition_temperature: float = 0.7
    ):
        self.client = client
        self.model = model
        self.selection_temperature = selection_temperature
        self.composition_temperature = composition_temperature

    @classmethod
    def from_config(cls, config: Config) -> "InferenceClient":
        client = AsyncOpenAI(
            api_key=config.llm.api_key,
            base_url=config.llm.base_url,
            timeout=config.llm.timeout_seconds,
            max_retries=config.llm.max_retries,
        )
        logger.info(f"Inference client using model {config.llm.model} at {config.llm.base_url}")
        return cls(
            client,
            config.llm.model,
            selection_temperature=config.assistant.selection_temperature,
            composition_temperature=config.assistant.composition_temperature,
        )

    async def _create(self, **kwargs: Any):
        try:
            response = await self.client.chat.completions.create(model=self.model, **kwargs)
        except APIError as e:
            raise InferenceError(f"Model request failed: {e}") from e

        if not response.choices:
            raise InferenceError("Model returned no choices")
        return response.choices[0].message

    async def select(self, messages: list[dict], tools: list[dict]) -> ChatCompletionMessage:
        """
        Let the model pick zero or more operations.

        Returns:
            The assistant message; its tool_calls may be empty

        Raises:
            InferenceError: If the provider fails
        """
        kwargs: dict[str, Any] = {
            "messages": messages,
            "temperature": self.selection_temperature,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        return await self._create(**kwargs)

    async def compose(self, messages: list[dict]) -> str:
        """
        Generate the final natural-language reply (no tools offered).

        Raises:
            InferenceError: If the provider fails
        """
        message = await self._create(messages=messages, temperature=self.composition_temperature)
        return message.content or ""

    async def complete_json(
        self,
        messages: list[dict],
        schema_name: str,
        schema: dict,
        temperature: float | None = None
    ) -> dict:
        """
        Ask for a JSON object constrained to a schema.

        Args:
            messages: Conversation to send
            schema_name: Name reported to the provider for the schema
            schema: JSON Schema of the expected object
            temperature: Defaults to the composition temperature

        Returns:
            The parsed object (not validated here; callers validate)

        Raises:
            InferenceError: If the provider fails or the content is not a JSON object
        """
        message = await self._create(
            messages=messages,
            temperature=self.composition_temperature if temperature is None else temperature,
            response_format={
                "type": "json_schema",
                "json_schema": {"name": schema_name, "schema": schema},
            },
        )

        try:
            parsed = json.loads(message.content or "")
        except json.JSONDecodeError as e:
            raise InferenceError(f"Model returned invalid JSON for {schema_name}: {e}") from e
        if not isinstance(parsed, dict):
            raise InferenceError(f"Model returned {type(parsed).__name__} for {schema_name}, expected object")
        return parsed

    async def close(self) -> None:
        await self.client.close()

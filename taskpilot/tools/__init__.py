"""
Operation Catalog
=================

The fixed set of operations the assistant can invoke on a user's tasks.

Each operation has:
- a unique name (one member of OperationName)
- a natural-language description that guides the model's choice
- a JSON Schema for its parameters, sent to the model verbatim
- a typed argument model the validated arguments are parsed into
- an async handler that runs against the task store

How an invocation flows through here:
1. The model proposes a call: operation name + JSON arguments
2. ToolRegistry.execute() looks the name up (unknown -> "Unknown tool")
3. Arguments are validated against the JSON Schema, then parsed into the
   operation's argument model
4. The handler runs; any exception becomes a failed ToolResult

Dispatch failures are data, not exceptions: a batch of N invocations always
yields N results.

This module provides:
- OperationName: the closed set of operation names
- ToolResult: standardized per-invocation result
- OperationContext: what a handler may touch (user, store, model, clock)
- Operation: catalog entry
- ToolRegistry / tool_registry: name -> Operation lookup
- load_operations(): registers every operation and checks the catalog is complete
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from jsonschema import Draft202012Validator
from pydantic import BaseModel, ValidationError

from taskpilot.errors import InvalidArgumentsError, StoreError, TaskPilotError
from taskpilot.store.base import TaskStore
from taskpilot.utils.config import AssistantConfig
from taskpilot.utils.dates import utc_now
from taskpilot.utils.logger import Logger

if TYPE_CHECKING:
    from taskpilot.agent.llm import InferenceClient

logger = Logger("Tools")


class OperationName(str, Enum):
    """Every operation the assistant knows about."""
    CREATE_TASK = "create_task"
    UPDATE_TASK = "update_task"
    DELETE_TASK = "delete_task"
    LIST_TASKS = "list_tasks"
    SCHEDULE_TASKS_TO_CALENDAR = "schedule_tasks_to_calendar"
    RESCHEDULE_TASKS = "reschedule_tasks"
    CHECK_DEADLINE_RISKS = "check_deadline_risks"
    CALCULATE_PRIORITY_SCORE = "calculate_priority_score"
    BULK_UPDATE_TASKS = "bulk_update_tasks"
    GENERATE_TASK_BRIEF = "generate_task_brief"
    UNDO_LAST_ACTION = "undo_last_action"
    GET_AUDIT_LOG = "get_audit_log"
    ASK_CLARIFICATION = "ask_clarification"


@dataclass
class ToolResult:
    """
    Standardized result from one operation invocation.

    Attributes:
        success: Whether the operation completed
        data: The operation output (a dict) when successful
        error: Error message when success is False
    """
    success: bool
    data: Any = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error
        }

    def to_message(self) -> str:
        """Format as the content of a tool message for the model."""
        if not self.success:
            return json.dumps({"success": False, "error": self.error})
        if isinstance(self.data, dict):
            return json.dumps({"success": True, **self.data}, default=str)
        return json.dumps({"success": True, "output": self.data}, default=str)


@dataclass
class OperationContext:
    """
    Everything an operation handler may use.

    One context is built per invocation; nothing in it is shared mutable
    state between invocations of the same request.

    Attributes:
        user_id: The verified user the operation acts for
        store: Task store collaborator
        settings: Assistant configuration (undo window, working hours)
        inference: Model client, for operations that generate text
        clock: Returns the current aware UTC time
    """
    user_id: str
    store: TaskStore
    settings: AssistantConfig = field(default_factory=AssistantConfig)
    inference: "InferenceClient | None" = None
    clock: Callable[[], datetime] = utc_now

    def now(self) -> datetime:
        return self.clock()

    async def audit(
        self,
        action_type: str,
        task_id: int | None,
        before: dict | None,
        after: dict | None
    ) -> dict | None:
        """
        Record a mutating action so it can be listed and undone.

        The task change has already been committed when this runs, so a
        failure here is logged and does not fail the operation.
        """
        try:
            return await self.store.record_action(self.user_id, {
                "action_type": action_type,
                "task_id": task_id,
                "before": before,
                "after": after,
                "created_at": self.now().isoformat(),
            })
        except StoreError as e:
            logger.error(f"Failed to record {action_type} action for task {task_id}", e)
            return None


Handler = Callable[[Any, OperationContext], Awaitable[ToolResult]]


@dataclass
class Operation:
    """
    Catalog entry for one operation.

    Example:
        async def _ask(args: ClarificationArgs, ctx: OperationContext) -> ToolResult:
            return ToolResult(success=True, data={"missing_fields": args.missing_fields})

        operation = Operation(
            name=OperationName.ASK_CLARIFICATION,
            description="Ask the user for missing information.",
            parameters={
                "type": "object",
                "additionalProperties": False,
                "properties": {"missing_fields": {"type": "array", "items": {"type": "string"}}},
                "required": ["missing_fields"],
            },
            args_model=ClarificationArgs,
            execute=_ask,
        )
    """
    name: OperationName
    description: str
    parameters: dict
    args_model: type[BaseModel]
    execute: Handler
    _validator: Draft202012Validator = field(init=False, repr=False)

    def __post_init__(self):
        Draft202012Validator.check_schema(self.parameters)
        self._validator = Draft202012Validator(self.parameters)

    def validate(self, arguments: dict) -> BaseModel:
        """
        Check arguments against the parameter schema and parse them.

        Raises:
            InvalidArgumentsError: With every schema violation joined together
        """
        errors = sorted(self._validator.iter_errors(arguments), key=lambda e: list(e.path))
        if errors:
            details = "; ".join(
                f"{'.'.join(str(p) for p in e.path) or '<root>'}: {e.message}" for e in errors
            )
            raise InvalidArgumentsError(details)

        try:
            return self.args_model.model_validate(arguments)
        except ValidationError as e:
            raise InvalidArgumentsError(str(e)) from e

    def describe(self) -> dict:
        """Static metadata for introspection."""
        return {
            "name": self.name.value,
            "description": self.description,
            "schema": self.parameters,
        }

    def to_openai_function(self) -> dict:
        """Render in the chat completions `tools` format."""
        return {
            "type": "function",
            "function": {
                "name": self.name.value,
                "description": self.description,
                "parameters": self.parameters
            }
        }


class ToolRegistry:
    """
    Name -> Operation lookup, filled once at startup.

    Example:
        registry = ToolRegistry()
        registry.register(create_task_operation)

        tools = registry.get_openai_functions()
        result = await registry.execute("create_task", {"title": "Pay rent"}, ctx)
    """

    def __init__(self):
        self._operations: dict[str, Operation] = {}

    def register(self, operation: Operation) -> None:
        """
        Raises:
            ValueError: If an operation with this name already exists
        """
        if operation.name.value in self._operations:
            raise ValueError(f"Operation '{operation.name.value}' is already registered")

        self._operations[operation.name.value] = operation
        logger.debug(f"Registered operation: {operation.name.value}")

    def get(self, name: str) -> Operation | None:
        return self._operations.get(name)

    def list_names(self) -> list[str]:
        return list(self._operations.keys())

    def list_operations(self) -> list[dict]:
        """[{name, description, schema}] for every operation."""
        return [op.describe() for op in self._operations.values()]

    def get_openai_functions(self) -> list[dict]:
        return [op.to_openai_function() for op in self._operations.values()]

    async def execute(self, name: str, arguments: dict, ctx: OperationContext) -> ToolResult:
        """
        Run an operation by name. Never raises.

        Args:
            name: Operation name proposed by the model
            arguments: Sanitized arguments
            ctx: Per-invocation context

        Returns:
            ToolResult; failures carry a non-empty error message
        """
        operation = self.get(name)
        if operation is None:
            return ToolResult(success=False, error="Unknown tool")

        try:
            args = operation.validate(arguments)
        except InvalidArgumentsError as e:
            logger.warning(f"Invalid arguments for {name}: {e}")
            return ToolResult(success=False, error=f"Invalid arguments: {e}")

        try:
            return await operation.execute(args, ctx)
        except TaskPilotError as e:
            logger.warning(f"Operation {name} failed: {e}")
            return ToolResult(success=False, error=str(e) or type(e).__name__)
        except Exception as e:
            logger.error(f"Operation {name} raised", e)
            return ToolResult(success=False, error=str(e) or type(e).__name__)


# Global registry; populated by load_operations()
tool_registry = ToolRegistry()

_loaded = False


def load_operations() -> ToolRegistry:
    """
    Import every operation module (they register themselves) and verify
    that the catalog, the handlers and the response schemas cover exactly
    the names in OperationName.

    Safe to call more than once.

    Raises:
        RuntimeError: If an operation is missing anywhere
    """
    global _loaded
    if _loaded:
        return tool_registry

    from taskpilot.tools import task_tools, planning_tools, assist_tools  # noqa: F401
    from taskpilot.tools.responses import RESPONSE_SCHEMAS

    expected = {name.value for name in OperationName}
    registered = set(tool_registry.list_names())
    with_schema = set(RESPONSE_SCHEMAS)

    if registered != expected:
        raise RuntimeError(f"Operation catalog mismatch: {sorted(expected ^ registered)}")
    if with_schema != expected:
        raise RuntimeError(f"Response schema mismatch: {sorted(expected ^ with_schema)}")

    _loaded = True
    logger.info(f"Loaded {len(registered)} operations")
    return tool_registry


__all__ = [
    "Operation",
    "OperationContext",
    "OperationName",
    "ToolRegistry",
    "ToolResult",
    "load_operations",
    "tool_registry",
]

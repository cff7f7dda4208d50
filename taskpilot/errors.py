"""
Error Types
===========

Exceptions raised across TaskPilot.

The assistant contains failures at the smallest scope that can route
around them:

- Input errors (InvalidRequestError, InvalidUserError) are raised before
  any model or store call and surface to the caller.
- Store errors raised inside an operation are converted into a failed
  ToolResult by the registry and never escape the executor.
- Inference errors during selection abort the request with a generic reply.
- StructuredOutputError is only raised in strict structured-output mode.
"""


class TaskPilotError(Exception):
    """Base class for all TaskPilot errors."""


class InvalidRequestError(TaskPilotError):
    """A required request field is missing or empty."""


class InvalidUserError(TaskPilotError):
    """The user id could not be verified against the identity provider."""


class StoreError(TaskPilotError):
    """The task, conversation or identity store rejected a call or was unreachable."""


class TaskNotFoundError(StoreError):
    """No task with the given id (or fuzzy reference) exists for the user."""

    def __init__(self, task_ref: object):
        self.task_ref = task_ref
        super().__init__(f"Task {task_ref} not found")


class InferenceError(TaskPilotError):
    """The model inference provider failed or returned an unusable response."""


class StructuredOutputError(TaskPilotError):
    """A structured response failed validation while strict mode is enabled."""


class InvalidArgumentsError(TaskPilotError):
    """Operation arguments do not match the operation's parameter schema."""

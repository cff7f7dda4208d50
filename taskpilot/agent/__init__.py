"""
Assistant System
================

The orchestrator behind every inbound message. It:
1. Verifies the user and assembles conversation context
2. Lets the model select operations from the catalog
3. Executes the selected operations concurrently
4. Composes the final reply from the operation results
5. Coerces the first successful result into a structured response

This module provides:
- TaskAssistant: main entry point (send_message, load_messages)
- ContextAssembler: builds the message list for the model
- ToolExecutor: parses and runs tool calls
- StructuredFormatter: validates structured responses
- InferenceClient: chat completions wrapper
"""

from taskpilot.agent.context import AssembledContext, ContextAssembler
from taskpilot.agent.core import SendMessageResult, TaskAssistant
from taskpilot.agent.formatter import StructuredFormatter, StructuredResponse
from taskpilot.agent.llm import InferenceClient
from taskpilot.agent.tools_executor import Selection, ToolCall, ToolCallResult, ToolExecutor

__all__ = [
    "AssembledContext",
    "ContextAssembler",
    "InferenceClient",
    "Selection",
    "SendMessageResult",
    "StructuredFormatter",
    "StructuredResponse",
    "TaskAssistant",
    "ToolCall",
    "ToolCallResult",
    "ToolExecutor",
]

"""
TaskPilot - Conversational Task Assistant
=========================================

A chat assistant that manages a user's tasks. Each message is turned into
zero or more calls to a fixed catalog of task operations (create, list,
update, schedule, score, bulk edit, undo, ...), executed against a task
store, and answered with a natural-language reply plus a schema-validated
structured payload.

This package provides:
- Assistant orchestrator (context, selection, execution, composition)
- Operation catalog with JSON-Schema parameters and typed arguments
- Response schema registry and structured formatter
- Supabase and in-memory stores
- FastAPI HTTP surface
"""

__version__ = "1.0.0"

"""Hook discovery and execution."""

from .runner import (
    EXEC_FAILURE,
    HookContext,
    HookDescriptor,
    HookExecutionResult,
    HookOutcome,
    HookRunner,
)

__all__ = [
    "EXEC_FAILURE",
    "HookContext",
    "HookDescriptor",
    "HookExecutionResult",
    "HookOutcome",
    "HookRunner",
]

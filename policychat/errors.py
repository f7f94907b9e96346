"""
errors.py
---------
Error taxonomy for a conversational turn.

Fatal errors (ConfigurationError, BadRequest, RunFailed, RunTimedOut, NoResponse)
surface to the caller. ToolError and SearchProviderError are contained: the
tool dispatcher turns them into text outputs so the run keeps going.
"""
from __future__ import annotations
from typing import Optional


class PolicyChatError(Exception):
    """Base class for every error raised by the turn engine."""


class ConfigurationError(PolicyChatError):
    """No assistant/backend identity is configured."""


class BadRequest(PolicyChatError):
    """Missing or empty input."""


class RunFailed(PolicyChatError):
    def __init__(self, message: str, run_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.run_id = run_id


class RunTimedOut(PolicyChatError):
    def __init__(self, run_id: str, elapsed: float) -> None:
        super().__init__(f"Run {run_id} did not finish within {elapsed:.1f}s")
        self.run_id = run_id
        self.elapsed = elapsed


class NoResponse(PolicyChatError):
    """The run completed but no assistant message was found."""


class ToolError(PolicyChatError):
    """An individual tool call failed."""


class SearchProviderError(ToolError):
    """The web search provider call failed."""

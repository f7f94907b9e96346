"""
nodes.py
--------
Assistant-side steps of a turn.

This module defines:
- A tool registry and a safe dispatcher for the tool calls the assistant requests
- The run lifecycle controller, which submits a run, polls it, feeds tool outputs
  back when the backend asks for them, and returns the assistant's reply

Key design notes:
- Tool failures never abort a run. Every requested call id gets an output, even for
  unknown tool names, so the backend is never left waiting on a missing output.
- Polling uses an injectable `sleep`/`clock` pair so tests run without real delays.
- A run that outlives its deadline is cancelled and raises `RunTimedOut` instead
  of polling forever.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from langchain_core.tools import BaseTool
from langchain_core.utils.function_calling import convert_to_openai_tool

from ..errors import NoResponse, RunFailed, RunTimedOut
from ..models import AssistantTextResult, BackendMessage, RunConfig, RunState, RunStatus, ToolCall, ToolOutput
from .backend import ConversationBackend

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0


# --------------------------------------------------------------------------------------
# Tool registry & safe dispatcher
# --------------------------------------------------------------------------------------
class ToolDispatcher:
    """
    Executes assistant-requested tool calls by name and returns their outputs.
    Any failure is caught and returned as text so the run continues.
    """
    def __init__(self, tools: Iterable[BaseTool] = ()) -> None:
        self.tools: Dict[str, BaseTool] = {t.name: t for t in tools}

    def definitions(self) -> List[Dict[str, Any]]:
        """OpenAI function-tool definitions for every registered tool."""
        return [convert_to_openai_tool(t) for t in self.tools.values()]

    def dispatch(self, call: ToolCall) -> ToolOutput:
        tool = self.tools.get(call.function_name)
        if tool is None:
            logger.warning("Assistant requested unknown tool %r (call %s)", call.function_name, call.id)
            return ToolOutput(
                tool_call_id=call.id,
                output=f"The tool '{call.function_name}' is not available. Answer without it.",
            )
        try:
            args = json.loads(call.arguments or "{}")
            if not isinstance(args, dict):
                raise ValueError("tool arguments must be a JSON object")
            result = tool.invoke(args)
        except Exception as e:
            logger.warning("Tool %s failed for call %s: %s", call.function_name, call.id, e)
            return ToolOutput(
                tool_call_id=call.id,
                output=f"Sorry, the {call.function_name} tool failed: {e}. Please answer with what you already know.",
            )
        logger.info("Tool %s completed for call %s", call.function_name, call.id)
        return ToolOutput(tool_call_id=call.id, output=result if isinstance(result, str) else json.dumps(result))

    def dispatch_all(self, calls: Iterable[ToolCall]) -> List[ToolOutput]:
        return [self.dispatch(c) for c in calls]


# --------------------------------------------------------------------------------------
# Run lifecycle controller
# --------------------------------------------------------------------------------------
def _reply_for_run(messages: List[BackendMessage], run_id: str) -> Optional[BackendMessage]:
    """
    Most recent assistant message produced by `run_id`. Messages without a run id
    are accepted as the reply when nothing better is found.
    """
    assistant = [m for m in messages if m.role == "assistant"]
    for m in assistant:
        if m.run_id == run_id:
            return m
    for m in assistant:
        if m.run_id is None:
            return m
    return None


class RunController:
    """
    Drives one assistant run: queued/in_progress -> requires_action -> ... -> completed | failed.
    """
    def __init__(
        self,
        backend: ConversationBackend,
        dispatcher: ToolDispatcher,
        assistant_id: str,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.backend = backend
        self.dispatcher = dispatcher
        self.assistant_id = assistant_id
        self.poll_interval = poll_interval
        self.timeout = timeout or None
        self.sleep = sleep
        self.clock = clock

    def run_turn(self, conversation_id: str, config: RunConfig, timeout: Optional[float] = None) -> AssistantTextResult:
        """
        Run the assistant on the conversation and return its reply.

        Raises RunFailed on a failed/cancelled/expired run, RunTimedOut when the
        deadline passes, and NoResponse when a completed run left no assistant message.
        """
        limit = timeout if timeout is not None else self.timeout
        started = self.clock()
        run = self.backend.create_run(conversation_id, self.assistant_id, config)
        logger.info("Run %s created on %s (%s)", run.id, conversation_id, run.status.value)
        last_status = run.status
        submitted: set[str] = set()

        while run.status != RunStatus.COMPLETED:
            if run.status.is_failure:
                message = run.last_error or f"Assistant run {run.status.value}"
                logger.error("Run %s ended as %s: %s", run.id, run.status.value, message)
                raise RunFailed(message, run_id=run.id)
            if run.status == RunStatus.REQUIRES_ACTION:
                self._submit_tool_outputs(conversation_id, run, submitted)
            elapsed = self.clock() - started
            if limit and elapsed >= limit:
                logger.error("Run %s timed out after %.1fs", run.id, elapsed)
                self._cancel(conversation_id, run.id)
                raise RunTimedOut(run.id, elapsed)
            self.sleep(self.poll_interval)
            run = self.backend.get_run(conversation_id, run.id)
            if run.status != last_status:
                logger.debug("Run %s: %s -> %s", run.id, last_status.value, run.status.value)
                last_status = run.status

        return self._collect_reply(conversation_id, run)

    def _submit_tool_outputs(self, conversation_id: str, run: RunState, submitted: set[str]) -> None:
        pending = [c for c in run.pending_tool_calls if c.id not in submitted]
        if not pending:
            logger.debug("Run %s has no new tool calls to answer", run.id)
            return
        outputs = self.dispatcher.dispatch_all(pending)
        submitted.update(o.tool_call_id for o in outputs)
        self.backend.submit_tool_outputs(conversation_id, run.id, outputs)
        logger.info("Submitted %d tool output(s) for run %s", len(outputs), run.id)

    def _cancel(self, conversation_id: str, run_id: str) -> None:
        # an active run blocks new messages on the conversation
        try:
            self.backend.cancel_run(conversation_id, run_id)
        except Exception as e:
            logger.warning("Could not cancel run %s: %s", run_id, e)

    def _collect_reply(self, conversation_id: str, run: RunState) -> AssistantTextResult:
        messages = self.backend.list_messages(conversation_id)
        reply = _reply_for_run(messages, run.id)
        if reply is None:
            raise NoResponse("No assistant response found")
        try:
            tools_used = self.backend.list_run_steps(conversation_id, run.id)
        except Exception as e:
            logger.warning("Could not list steps for run %s: %s", run.id, e)
            tools_used = []
        if tools_used:
            logger.info("Run %s used tools: %s", run.id, ", ".join(tools_used))
        return AssistantTextResult(
            raw_text=reply.text,
            annotations=reply.annotations,
            message_id=reply.id,
            tools_used=tools_used,
        )

"""
backend.py
----------
Adapters for the conversation backend and file metadata lookup.

The turn graph only depends on the `ConversationBackend` and `FileLookup`
protocols. `OpenAIAssistantsBackend` implements both on top of the OpenAI
Assistants API (threads, runs, run steps, files).
"""
from __future__ import annotations

import logging
from typing import Any, List, Optional, Protocol, Sequence

from openai import OpenAI

from ..models import Annotation, BackendMessage, RunConfig, RunState, RunStatus, ToolCall, ToolOutput

logger = logging.getLogger(__name__)


class ConversationBackend(Protocol):
    def create_message(self, conversation_id: str, role: str, text: str) -> str: ...

    def create_run(self, conversation_id: str, assistant_id: str, config: RunConfig) -> RunState: ...

    def get_run(self, conversation_id: str, run_id: str) -> RunState: ...

    def list_run_steps(self, conversation_id: str, run_id: str) -> List[str]: ...

    def submit_tool_outputs(self, conversation_id: str, run_id: str, outputs: Sequence[ToolOutput]) -> None: ...

    def cancel_run(self, conversation_id: str, run_id: str) -> None: ...

    def list_messages(self, conversation_id: str) -> List[BackendMessage]: ...

    def delete_message(self, conversation_id: str, message_id: str) -> None: ...


class FileLookup(Protocol):
    def file_name(self, file_ref: str) -> str: ...


# --------------------------------------------------------------------------------------
# Conversion helpers (SDK objects -> our models)
# --------------------------------------------------------------------------------------
def _run_state(run: Any) -> RunState:
    calls: List[ToolCall] = []
    action = getattr(run, "required_action", None)
    submit = getattr(action, "submit_tool_outputs", None) if action else None
    for tc in getattr(submit, "tool_calls", None) or []:
        fn = getattr(tc, "function", None)
        calls.append(
            ToolCall(
                id=tc.id,
                function_name=getattr(fn, "name", "") or "",
                arguments=getattr(fn, "arguments", None) or "{}",
            )
        )
    error = getattr(run, "last_error", None)
    return RunState(
        id=run.id,
        status=RunStatus(run.status),
        pending_tool_calls=calls,
        last_error=getattr(error, "message", None) if error else None,
    )


def _annotation(raw: Any) -> Optional[Annotation]:
    kind = getattr(raw, "type", "")
    if kind == "file_citation":
        cited = getattr(raw, "file_citation", None)
        return Annotation(
            kind="file_citation",
            file_ref=getattr(cited, "file_id", None),
            quote=getattr(cited, "quote", None) or None,
        )
    if kind in {"url_citation", "web_search_result"}:
        ref = getattr(raw, kind, None) or raw
        return Annotation(
            kind="external_reference",
            url=getattr(ref, "url", None),
            title=getattr(ref, "title", None),
        )
    return None


def _message(raw: Any) -> BackendMessage:
    texts: List[str] = []
    annotations: List[Annotation] = []
    for part in getattr(raw, "content", None) or []:
        if getattr(part, "type", "") != "text":
            continue
        texts.append(part.text.value)
        for a in part.text.annotations or []:
            converted = _annotation(a)
            if converted is not None:
                annotations.append(converted)
    return BackendMessage(
        id=raw.id,
        role=raw.role,
        run_id=getattr(raw, "run_id", None),
        text="\n\n".join(texts),
        annotations=annotations,
    )


# --------------------------------------------------------------------------------------
# OpenAI Assistants adapter
# --------------------------------------------------------------------------------------
class OpenAIAssistantsBackend:
    """
    `ConversationBackend` + `FileLookup` over the OpenAI Assistants API.
    Run instructions are sent as `additional_instructions` so the assistant's
    own instructions stay in effect.
    """
    def __init__(self, client: Optional[OpenAI] = None, api_key: str = "") -> None:
        self.client = client or OpenAI(api_key=api_key or None)

    def create_message(self, conversation_id: str, role: str, text: str) -> str:
        msg = self.client.beta.threads.messages.create(thread_id=conversation_id, role=role, content=text)
        return msg.id

    def create_run(self, conversation_id: str, assistant_id: str, config: RunConfig) -> RunState:
        kwargs: dict[str, Any] = {"thread_id": conversation_id, "assistant_id": assistant_id}
        if config.tools:
            kwargs["tools"] = config.tools
        if config.tool_resources:
            kwargs["tool_resources"] = config.tool_resources
        if config.instructions:
            kwargs["additional_instructions"] = config.instructions
        if config.tool_choice:
            kwargs["tool_choice"] = config.tool_choice
        return _run_state(self.client.beta.threads.runs.create(**kwargs))

    def get_run(self, conversation_id: str, run_id: str) -> RunState:
        return _run_state(self.client.beta.threads.runs.retrieve(run_id, thread_id=conversation_id))

    def list_run_steps(self, conversation_id: str, run_id: str) -> List[str]:
        used: List[str] = []
        steps = self.client.beta.threads.runs.steps.list(run_id, thread_id=conversation_id)
        for step in steps.data:
            details = getattr(step, "step_details", None)
            if getattr(details, "type", "") != "tool_calls":
                continue
            for tc in details.tool_calls or []:
                name = tc.type
                if tc.type == "function":
                    name = getattr(tc.function, "name", "function")
                if name not in used:
                    used.append(name)
        return used

    def submit_tool_outputs(self, conversation_id: str, run_id: str, outputs: Sequence[ToolOutput]) -> None:
        self.client.beta.threads.runs.submit_tool_outputs(
            run_id,
            thread_id=conversation_id,
            tool_outputs=[{"tool_call_id": o.tool_call_id, "output": o.output} for o in outputs],
        )

    def cancel_run(self, conversation_id: str, run_id: str) -> None:
        self.client.beta.threads.runs.cancel(run_id, thread_id=conversation_id)

    def list_messages(self, conversation_id: str) -> List[BackendMessage]:
        page = self.client.beta.threads.messages.list(thread_id=conversation_id, order="desc")
        return [_message(m) for m in page.data]

    def delete_message(self, conversation_id: str, message_id: str) -> None:
        self.client.beta.threads.messages.delete(message_id, thread_id=conversation_id)

    def file_name(self, file_ref: str) -> str:
        return self.client.files.retrieve(file_ref).filename

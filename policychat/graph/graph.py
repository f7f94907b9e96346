"""
graph.py
--------
LangGraph wiring for one conversational turn.

Flow:
START -> [prime] -> post_message -> configure -> run -> file_sources -> [web_sources] -> END

- `prime` only runs for document-grounded turns when priming is enabled. It asks
  a throwaway grounding question, runs it, then deletes both messages so the
  visible transcript is unchanged. Its failures are logged and ignored.
- `web_sources` only runs for web-search turns.
- Web search and document grounding are never configured together: the turn
  mode is a tagged variant, not two booleans.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from langgraph.graph import StateGraph, START, END
from pydantic import BaseModel, Field

from ..errors import BadRequest, ConfigurationError
from ..models import (
    AssistantTextResult,
    DocumentGroundedMode,
    RunConfig,
    Source,
    TurnMode,
    TurnRequest,
    TurnResult,
    WebSearchMode,
    turn_mode_for,
)
from .backend import ConversationBackend, FileLookup
from .classifiers import classify_web_search
from .memory import FileNameCache
from .nodes import RunController, ToolDispatcher
from .prompts import GROUNDED_INSTRUCTIONS, PRIMING_QUESTION, WEB_SEARCH_INSTRUCTIONS
from .sources import build_annotation_sources, build_file_sources, build_web_sources, fallback_web_source

logger = logging.getLogger(__name__)


class TurnState(BaseModel):
    request: TurnRequest
    mode: TurnMode
    primed: bool = False
    user_message_id: Optional[str] = None
    run_config: Optional[RunConfig] = None
    answer: Optional[AssistantTextResult] = None
    sources: List[Source] = Field(default_factory=list)
    web_search_had_results: bool = False


@dataclass
class TurnServices:
    """Everything a turn needs, built once per process (see app/deps.py)."""
    backend: ConversationBackend
    files: FileLookup
    file_names: FileNameCache
    dispatcher: ToolDispatcher
    controller: RunController
    priming_search: bool = False
    citation_workers: int = 4


# --------------------------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------------------------
def _file_search_config(grounding_handle: str, **extra: Any) -> RunConfig:
    return RunConfig(
        tools=[{"type": "file_search"}],
        tool_resources={"file_search": {"vector_store_ids": [grounding_handle]}},
        **extra,
    )


def build_run_config(mode: Any, dispatcher: ToolDispatcher) -> RunConfig:
    """
    Web search registers the function tools only, which also suppresses document
    grounding for the turn. Grounded turns register file search with strict
    instructions. Plain turns use the assistant's own configuration.
    """
    if isinstance(mode, WebSearchMode):
        return RunConfig(tools=dispatcher.definitions(), instructions=WEB_SEARCH_INSTRUCTIONS)
    if isinstance(mode, DocumentGroundedMode):
        return _file_search_config(mode.grounding_handle, instructions=GROUNDED_INSTRUCTIONS)
    return RunConfig()


def _user_message(request: TurnRequest) -> str:
    text = request.user_text.strip()
    if request.attached_chart_data is None:
        return text
    try:
        chart = json.dumps(request.attached_chart_data, ensure_ascii=False, indent=2, default=str)
    except (TypeError, ValueError):
        chart = str(request.attached_chart_data)
    return f"{text}\n\nAttached chart data:\n```json\n{chart}\n```"


def _result_to_dict(result: Any) -> Dict[str, Any]:
    """
    Normalize a LangGraph invoke result (a Pydantic model or a dict) into a plain dict.
    """
    if result is None:
        return {}
    if isinstance(result, dict):
        return result
    if hasattr(result, "model_dump"):
        return {name: getattr(result, name) for name in type(result).model_fields}
    return dict(result)


# --------------------------------------------------------------------------------------
# Graph build & run
# --------------------------------------------------------------------------------------
def build_graph(services: TurnServices):
    """
    Build and compile the turn state machine around the given services.
    """
    backend = services.backend
    controller = services.controller

    def node_prime(state: TurnState) -> Dict[str, Any]:
        conversation_id = state.request.conversation_id
        handle = state.mode.grounding_handle
        try:
            question_id = backend.create_message(conversation_id, "user", PRIMING_QUESTION)
            try:
                answer = controller.run_turn(
                    conversation_id,
                    _file_search_config(handle, tool_choice={"type": "file_search"}),
                )
                if answer.message_id:
                    backend.delete_message(conversation_id, answer.message_id)
            finally:
                backend.delete_message(conversation_id, question_id)
            logger.info("Priming search completed on %s", conversation_id)
        except Exception as e:
            logger.warning("Priming search failed on %s, continuing without it: %s", conversation_id, e)
            return {"primed": False}
        return {"primed": True}

    def node_post_message(state: TurnState) -> Dict[str, Any]:
        message_id = backend.create_message(state.request.conversation_id, "user", _user_message(state.request))
        return {"user_message_id": message_id}

    def node_configure(state: TurnState) -> Dict[str, Any]:
        return {"run_config": build_run_config(state.mode, services.dispatcher)}

    def node_run(state: TurnState) -> Dict[str, Any]:
        answer = controller.run_turn(state.request.conversation_id, state.run_config or RunConfig())
        return {"answer": answer}

    def node_file_sources(state: TurnState) -> Dict[str, Any]:
        answer = state.answer or AssistantTextResult()
        sources = build_file_sources(
            answer.annotations,
            answer.raw_text,
            services.file_names,
            services.files.file_name,
            max_workers=services.citation_workers,
        )
        return {"sources": sources}

    def node_web_sources(state: TurnState) -> Dict[str, Any]:
        answer = state.answer or AssistantTextResult()
        cited = build_annotation_sources(answer.annotations, existing=state.sources)
        web = cited + build_web_sources(answer.raw_text, existing=state.sources + cited)
        had_results = bool(cited) or classify_web_search(answer.raw_text)
        if had_results and not web:
            web = [fallback_web_source(state.request.user_text)]
        return {"sources": state.sources + web, "web_search_had_results": had_results}

    def route_start(state: TurnState) -> str:
        if services.priming_search and isinstance(state.mode, DocumentGroundedMode):
            return "prime"
        return "post_message"

    def route_sources(state: TurnState) -> str:
        return "web_sources" if isinstance(state.mode, WebSearchMode) else "done"

    g = StateGraph(TurnState)

    g.add_node("prime", node_prime)
    g.add_node("post_message", node_post_message)
    g.add_node("configure", node_configure)
    g.add_node("run", node_run)
    g.add_node("file_sources", node_file_sources)
    g.add_node("web_sources", node_web_sources)

    g.add_conditional_edges(START, route_start, {"prime": "prime", "post_message": "post_message"})
    g.add_edge("prime", "post_message")
    g.add_edge("post_message", "configure")
    g.add_edge("configure", "run")
    g.add_edge("run", "file_sources")
    g.add_conditional_edges("file_sources", route_sources, {"web_sources": "web_sources", "done": END})
    g.add_edge("web_sources", END)

    return g.compile()


def process_turn(app_graph, services: TurnServices, request: TurnRequest) -> TurnResult:
    """
    Run one turn end-to-end and return the reply with its sources.

    Raises BadRequest / ConfigurationError before touching the backend, and lets
    RunFailed / RunTimedOut / NoResponse from the run propagate.
    """
    if not request.conversation_id.strip() or not request.user_text.strip():
        raise BadRequest("Conversation ID and message are required")
    if not services.controller.assistant_id:
        raise ConfigurationError("Assistant ID is not configured")

    initial = TurnState(request=request, mode=turn_mode_for(request))
    raw = app_graph.invoke(initial)
    state = TurnState.model_validate(_result_to_dict(raw))

    answer = state.answer or AssistantTextResult()
    result = TurnResult(
        content=answer.raw_text,
        sources=state.sources,
        web_search_used=isinstance(state.mode, WebSearchMode),
        web_search_had_results=state.web_search_had_results,
    )
    logger.info(
        "Turn on %s finished: mode=%s sources=%d web_results=%s",
        request.conversation_id,
        state.mode.kind,
        len(result.sources),
        result.web_search_had_results,
    )
    return result

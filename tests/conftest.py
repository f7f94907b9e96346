"""Shared fakes: a scripted conversation backend, a search provider and a clock."""

from __future__ import annotations

from typing import Callable, Iterable, List, Optional, Sequence, Union

import pytest

from policychat.errors import SearchProviderError
from policychat.graph.graph import TurnServices, build_graph
from policychat.graph.memory import FileNameCache
from policychat.graph.nodes import RunController, ToolDispatcher
from policychat.graph.tools.web_tools import make_search_web_tool
from policychat.models import Annotation, BackendMessage, RunConfig, RunState, ToolCall, ToolOutput


class FakeBackend:
    """
    In-memory conversation backend. Each run walks through `statuses`
    (create_run returns the first, every get_run advances one step and the last
    one repeats). When a run reaches `completed` the reply message is appended.
    """

    def __init__(
        self,
        statuses: Sequence[str] = ("completed",),
        reply: Union[str, Callable[["FakeBackend"], str]] = "",
        annotations: Iterable[Annotation] = (),
        tool_calls: Iterable[ToolCall] = (),
        last_error: Optional[str] = None,
        file_names: Optional[dict] = None,
        steps: Sequence[str] = (),
        write_reply: bool = True,
    ) -> None:
        self.statuses = list(statuses)
        self.reply = reply
        self.annotations = list(annotations)
        self.tool_calls = list(tool_calls)
        self.last_error = last_error
        self.file_names = dict(file_names or {})
        self.steps = list(steps)
        self.write_reply = write_reply

        self.calls: List[str] = []
        self.messages: List[BackendMessage] = []  # oldest first
        self.run_configs: List[RunConfig] = []
        self.submitted: List[ToolOutput] = []
        self.deleted: List[str] = []
        self.file_lookups: List[str] = []
        self.cancelled: List[str] = []
        self._runs = 0
        self._cursor = 0

    # --- ConversationBackend ---
    def create_message(self, conversation_id: str, role: str, text: str) -> str:
        self.calls.append("create_message")
        msg = BackendMessage(id=f"msg_{len(self.messages) + 1}", role=role, text=text)
        self.messages.append(msg)
        return msg.id

    def create_run(self, conversation_id: str, assistant_id: str, config: RunConfig) -> RunState:
        self.calls.append("create_run")
        self._runs += 1
        self._cursor = 0
        self.run_configs.append(config)
        return self._state(f"run_{self._runs}")

    def get_run(self, conversation_id: str, run_id: str) -> RunState:
        self.calls.append("get_run")
        self._cursor += 1
        return self._state(run_id)

    def list_run_steps(self, conversation_id: str, run_id: str) -> List[str]:
        self.calls.append("list_run_steps")
        return list(self.steps)

    def submit_tool_outputs(self, conversation_id: str, run_id: str, outputs: Sequence[ToolOutput]) -> None:
        self.calls.append("submit_tool_outputs")
        self.submitted.extend(outputs)

    def cancel_run(self, conversation_id: str, run_id: str) -> None:
        self.calls.append("cancel_run")
        self.cancelled.append(run_id)

    def list_messages(self, conversation_id: str) -> List[BackendMessage]:
        self.calls.append("list_messages")
        return list(reversed(self.messages))

    def delete_message(self, conversation_id: str, message_id: str) -> None:
        self.calls.append("delete_message")
        self.deleted.append(message_id)
        self.messages = [m for m in self.messages if m.id != message_id]

    # --- FileLookup ---
    def file_name(self, file_ref: str) -> str:
        self.file_lookups.append(file_ref)
        return self.file_names[file_ref]

    # --- helpers ---
    def user_texts(self) -> List[str]:
        return [m.text for m in self.messages if m.role == "user"]

    def _state(self, run_id: str) -> RunState:
        status = self.statuses[min(self._cursor, len(self.statuses) - 1)]
        if status == "completed" and self.write_reply and not any(m.run_id == run_id for m in self.messages):
            text = self.reply(self) if callable(self.reply) else self.reply
            self.messages.append(
                BackendMessage(
                    id=f"msg_{len(self.messages) + 1}",
                    role="assistant",
                    run_id=run_id,
                    text=text,
                    annotations=self.annotations,
                )
            )
        return RunState(
            id=run_id,
            status=status,
            pending_tool_calls=self.tool_calls if status == "requires_action" else [],
            last_error=self.last_error if status == "failed" else None,
        )


class FakeSearchProvider:
    def __init__(self, result: str = "1. [HUD](https://www.hud.gov/about)\n", error: Optional[str] = None) -> None:
        self.result = result
        self.error = error
        self.queries: List[str] = []

    def search(self, query: str) -> str:
        self.queries.append(query)
        if self.error:
            raise SearchProviderError(self.error)
        return self.result


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def search_provider() -> FakeSearchProvider:
    return FakeSearchProvider()


@pytest.fixture
def make_services(clock, search_provider):
    def _make(
        backend: FakeBackend,
        assistant_id: str = "asst_test",
        priming_search: bool = False,
        timeout: Optional[float] = None,
        provider=None,
    ) -> TurnServices:
        dispatcher = ToolDispatcher([make_search_web_tool(provider or search_provider)])
        controller = RunController(
            backend,
            dispatcher,
            assistant_id,
            poll_interval=1.0,
            timeout=timeout,
            sleep=clock.sleep,
            clock=clock,
        )
        return TurnServices(
            backend=backend,
            files=backend,
            file_names=FileNameCache(),
            dispatcher=dispatcher,
            controller=controller,
            priming_search=priming_search,
        )

    return _make


@pytest.fixture
def make_engine(make_services):
    """Returns (graph, services) for a backend."""
    def _make(backend: FakeBackend, **kwargs):
        services = make_services(backend, **kwargs)
        return build_graph(services), services

    return _make

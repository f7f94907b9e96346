import json

import pytest

from conftest import FakeBackend, FakeSearchProvider
from policychat.errors import BadRequest, ConfigurationError, NoResponse, RunFailed
from policychat.graph.graph import process_turn
from policychat.graph.prompts import GROUNDED_INSTRUCTIONS, PRIMING_QUESTION, WEB_SEARCH_INSTRUCTIONS
from policychat.models import Annotation, ToolCall, TurnRequest


def _request(**kwargs):
    data = {"conversation_id": "thread_1", "user_text": "What are owner responsibilities?"}
    data.update(kwargs)
    return TurnRequest(**data)


def test_grounded_turn_builds_file_source(make_engine):
    backend = FakeBackend(
        reply="Owners must maintain units in good repair.",
        annotations=[
            Annotation(
                kind="file_citation",
                file_ref="file-1",
                quote="Section 8-1: Owner Responsibility, Page 3",
            )
        ],
        file_names={"file-1": "HCV Guidebook.pdf"},
    )
    graph, services = make_engine(backend)

    result = process_turn(graph, services, _request(grounding_handle="vs_1"))

    assert result.content == "Owners must maintain units in good repair."
    assert result.web_search_used is False
    (source,) = result.sources
    assert source.type == "file"
    assert source.document == "HCV Guidebook.pdf"
    assert "8-1" in source.section
    assert source.page == "3"

    (config,) = backend.run_configs
    assert config.tools == [{"type": "file_search"}]
    assert config.tool_resources == {"file_search": {"vector_store_ids": ["vs_1"]}}
    assert config.instructions == GROUNDED_INSTRUCTIONS


def test_file_names_are_cached_across_turns(make_engine):
    citation = Annotation(kind="file_citation", file_ref="file-1", quote="Page 3")
    backend = FakeBackend(reply="See the plan.", annotations=[citation], file_names={"file-1": "Plan.pdf"})
    graph, services = make_engine(backend)

    process_turn(graph, services, _request(grounding_handle="vs_1"))
    backend.messages.clear()
    process_turn(graph, services, _request(grounding_handle="vs_1"))

    assert backend.file_lookups == ["file-1"]


def test_web_turn_builds_unique_web_sources(make_engine):
    reply = (
        "According to HUD, see https://www.hud.gov/topics/rental_assistance and "
        "https://www.hud.gov/about. More at https://www.hud.gov/about."
    )
    backend = FakeBackend(reply=reply)
    graph, services = make_engine(backend)

    result = process_turn(graph, services, _request(use_web_search=True, grounding_handle="vs_1"))

    assert result.web_search_used is True
    assert result.web_search_had_results is True
    assert [s.document for s in result.sources] == [
        "https://www.hud.gov/topics/rental_assistance",
        "https://www.hud.gov/about",
    ]
    assert all(s.type == "web" for s in result.sources)
    assert {s.description for s in result.sources} == {"Web search result from hud.gov"}


def test_web_turn_never_registers_document_grounding(make_engine):
    backend = FakeBackend(reply="No idea.")
    graph, services = make_engine(backend)

    process_turn(graph, services, _request(use_web_search=True, grounding_handle="vs_1"))

    (config,) = backend.run_configs
    assert config.tool_resources is None
    assert [t["type"] for t in config.tools] == ["function"]
    assert config.tools[0]["function"]["name"] == "search_web"
    assert config.instructions == WEB_SEARCH_INSTRUCTIONS


def test_web_search_round_trip(make_engine):
    provider = FakeSearchProvider(result="1. [HUD](https://www.hud.gov/leadership)\n   Secretary named.\n")
    backend = FakeBackend(
        statuses=["queued", "requires_action", "queued", "completed"],
        tool_calls=[ToolCall(id="call_1", function_name="search_web", arguments=json.dumps({"query": "HUD secretary"}))],
        reply=lambda b: "From the web: " + b.submitted[0].output,
    )
    graph, services = make_engine(backend, provider=provider)

    result = process_turn(graph, services, _request(user_text="Who leads HUD?", use_web_search=True))

    submit_at = backend.calls.index("submit_tool_outputs")
    assert backend.calls[submit_at + 1] == "get_run"
    assert provider.queries == ["HUD secretary"]
    assert "https://www.hud.gov/leadership" in result.content
    assert [s.document for s in result.sources] == ["https://www.hud.gov/leadership"]


def test_successful_web_turn_without_urls_gets_fallback_source(make_engine):
    backend = FakeBackend(reply="Based on my search, the program was extended through 2026.")
    graph, services = make_engine(backend)

    result = process_turn(graph, services, _request(user_text="voucher program extension", use_web_search=True))

    assert result.web_search_had_results is True
    (source,) = result.sources
    assert source.document == "https://www.google.com/search?q=voucher+program+extension"


def test_unsuccessful_web_turn_has_no_sources(make_engine):
    backend = FakeBackend(reply="I could not find any results")
    graph, services = make_engine(backend)

    result = process_turn(graph, services, _request(use_web_search=True))

    assert result.web_search_had_results is False
    assert result.sources == []


def test_plain_turn_uses_assistant_defaults(make_engine):
    backend = FakeBackend(reply="Hello there.")
    graph, services = make_engine(backend)

    result = process_turn(graph, services, _request())

    assert result.content == "Hello there."
    (config,) = backend.run_configs
    assert config.tools == [] and config.tool_resources is None and config.instructions is None


def test_failed_run_propagates(make_engine):
    backend = FakeBackend(statuses=["queued", "failed"], last_error="Vector store unavailable")
    graph, services = make_engine(backend)

    with pytest.raises(RunFailed, match="Vector store unavailable"):
        process_turn(graph, services, _request(grounding_handle="vs_1"))


def test_missing_reply_propagates(make_engine):
    graph, services = make_engine(FakeBackend(write_reply=False))
    with pytest.raises(NoResponse):
        process_turn(graph, services, _request())


@pytest.mark.parametrize("text", ["", "   "])
def test_empty_message_is_rejected_before_any_backend_call(make_engine, text):
    backend = FakeBackend()
    graph, services = make_engine(backend)

    with pytest.raises(BadRequest):
        process_turn(graph, services, _request(user_text=text))
    assert backend.calls == []


def test_missing_assistant_id_is_a_configuration_error(make_engine):
    backend = FakeBackend()
    graph, services = make_engine(backend, assistant_id="")

    with pytest.raises(ConfigurationError):
        process_turn(graph, services, _request())
    assert backend.calls == []


def test_priming_search_runs_and_cleans_up(make_engine):
    backend = FakeBackend(reply="Answer.")
    graph, services = make_engine(backend, priming_search=True)

    process_turn(graph, services, _request(grounding_handle="vs_1"))

    priming_config, turn_config = backend.run_configs
    assert priming_config.tool_choice == {"type": "file_search"}
    assert turn_config.tool_choice is None
    assert len(backend.deleted) == 2
    assert PRIMING_QUESTION not in backend.user_texts()
    assert [m.role for m in backend.messages] == ["user", "assistant"]


def test_priming_failure_does_not_fail_the_turn(make_engine):
    class FlakyBackend(FakeBackend):
        def create_run(self, conversation_id, assistant_id, config):
            if config.tool_choice:
                raise RuntimeError("priming exploded")
            return super().create_run(conversation_id, assistant_id, config)

    backend = FlakyBackend(reply="Answer.")
    graph, services = make_engine(backend, priming_search=True)

    result = process_turn(graph, services, _request(grounding_handle="vs_1"))

    assert result.content == "Answer."
    assert PRIMING_QUESTION not in backend.user_texts()


def test_priming_is_skipped_for_web_turns(make_engine):
    backend = FakeBackend(reply="Nothing.")
    graph, services = make_engine(backend, priming_search=True)

    process_turn(graph, services, _request(use_web_search=True, grounding_handle="vs_1"))

    assert len(backend.run_configs) == 1
    assert backend.deleted == []


def test_chart_data_is_attached_to_the_message(make_engine):
    backend = FakeBackend(reply="Chart noted.")
    graph, services = make_engine(backend)

    process_turn(graph, services, _request(user_text="Compare these", attached_chart_data={"labels": ["A", "B"]}))

    (posted,) = backend.user_texts()
    assert posted.startswith("Compare these\n\nAttached chart data:")
    assert '"labels"' in posted


def test_cited_url_annotation_becomes_a_web_source(make_engine):
    backend = FakeBackend(
        reply="The Secretary leads HUD [1].",
        annotations=[
            Annotation(kind="external_reference", url="https://www.hud.gov/about/leadership", title="HUD Leadership")
        ],
    )
    graph, services = make_engine(backend)

    result = process_turn(graph, services, _request(user_text="who leads HUD", use_web_search=True))

    assert result.web_search_had_results is True
    (source,) = result.sources
    assert source.type == "web"
    assert source.document == "https://www.hud.gov/about/leadership"
    assert source.section == "HUD Leadership"
    assert source.description == "Web search result from hud.gov"


def test_url_both_cited_and_in_text_is_listed_once(make_engine):
    backend = FakeBackend(
        reply="See https://www.hud.gov/about/leadership. Also https://www.usa.gov/agencies.",
        annotations=[Annotation(kind="external_reference", url="https://www.hud.gov/about/leadership")],
    )
    graph, services = make_engine(backend)

    result = process_turn(graph, services, _request(use_web_search=True))

    assert [s.document for s in result.sources] == [
        "https://www.hud.gov/about/leadership",
        "https://www.usa.gov/agencies",
    ]
    assert result.sources[0].section == "Information from hud.gov - leadership"


def test_timed_out_priming_run_is_cancelled_and_the_turn_continues(make_engine):
    class SlowPrimingBackend(FakeBackend):
        def create_run(self, conversation_id, assistant_id, config):
            self.statuses = ["in_progress"] if config.tool_choice else ["completed"]
            return super().create_run(conversation_id, assistant_id, config)

    backend = SlowPrimingBackend(reply="Answer.")
    graph, services = make_engine(backend, priming_search=True, timeout=3.0)

    result = process_turn(graph, services, _request(grounding_handle="vs_1"))

    assert result.content == "Answer."
    assert backend.cancelled == ["run_1"]
    assert backend.calls.index("cancel_run") < backend.calls.index("create_message", 1)
    assert PRIMING_QUESTION not in backend.user_texts()

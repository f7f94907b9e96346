from __future__ import annotations
from functools import lru_cache
from ..config import settings
from ..graph.backend import OpenAIAssistantsBackend
from ..graph.graph import TurnServices, build_graph
from ..graph.memory import FileNameCache, JsonFileNameStore
from ..graph.nodes import RunController, ToolDispatcher
from ..graph.tools.web_tools import GoogleSearchProvider, make_search_web_tool

@lru_cache(maxsize=1)
def get_backend():
    return OpenAIAssistantsBackend(api_key=settings.openai_api_key)

@lru_cache(maxsize=1)
def get_file_names():
    if settings.file_name_cache_path:
        return JsonFileNameStore(settings.file_name_cache_path)
    return FileNameCache()

@lru_cache(maxsize=1)
def get_search_provider():
    return GoogleSearchProvider(settings.google_api_key, settings.google_cse_id, num_results=settings.search_results)

@lru_cache(maxsize=1)
def get_services():
    backend = get_backend()
    dispatcher = ToolDispatcher([make_search_web_tool(get_search_provider())])
    controller = RunController(
        backend,
        dispatcher,
        settings.assistant_id,
        poll_interval=settings.poll_interval,
        timeout=settings.run_timeout,
    )
    return TurnServices(
        backend=backend,
        files=backend,
        file_names=get_file_names(),
        dispatcher=dispatcher,
        controller=controller,
        priming_search=settings.priming_search,
        citation_workers=settings.citation_workers,
    )

@lru_cache(maxsize=1)
def get_graph():
    return build_graph(get_services())

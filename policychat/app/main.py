"""
main.py
-------
FastAPI app exposing the turn engine:
- POST /chat/message runs one conversational turn
- POST /utils/test-web-search checks the web search provider on its own
- GET /health for liveness checks
"""
from __future__ import annotations
import logging
from fastapi import FastAPI, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from ..config import settings, setup_logging
from ..errors import (
    BadRequest,
    ConfigurationError,
    NoResponse,
    PolicyChatError,
    RunFailed,
    RunTimedOut,
    SearchProviderError,
)
from ..models import TurnRequest, TurnResult
from ..graph.graph import process_turn
from .deps import get_graph, get_search_provider, get_services

setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Policy Assistant Turn Engine", version="1.0.0")

STATUS_CODES = {
    BadRequest: 400,
    ConfigurationError: 500,
    NoResponse: 500,
    RunFailed: 502,
    SearchProviderError: 502,
    RunTimedOut: 504,
}


class WebSearchTestRequest(BaseModel):
    query: str = ""


class WebSearchTestResponse(BaseModel):
    """Response model for /utils/test-web-search."""
    success: bool
    results: str


@app.exception_handler(PolicyChatError)
def handle_engine_error(request: Request, exc: PolicyChatError) -> JSONResponse:
    status = next((code for cls, code in STATUS_CODES.items() if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error("Request to %s failed: %s", request.url.path, exc)
    return JSONResponse(status_code=status, content={"error": str(exc)})


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok"}


@app.post("/chat/message", response_model=TurnResult)
def chat_message(
    req: TurnRequest,
    services = Depends(get_services),
    graph = Depends(get_graph),
):
    """
    Run one turn: post the message, run the assistant (dispatching any web searches
    it asks for) and return the reply with its deduplicated sources.
    """
    return process_turn(graph, services, req)


@app.post("/utils/test-web-search", response_model=WebSearchTestResponse)
def test_web_search(req: WebSearchTestRequest, provider = Depends(get_search_provider)):
    """Run the web search provider directly."""
    if not req.query.strip():
        raise BadRequest("Query is required")
    return WebSearchTestResponse(success=True, results=provider.search(req.query))

"""
models.py
---------
Pydantic models shared by the turn graph, the backend adapters and the API layer.
"""
from __future__ import annotations
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts and emits camelCase JSON while keeping snake_case attributes."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --------------------------------------------------------------------------------------
# Turn input / output
# --------------------------------------------------------------------------------------
class TurnRequest(CamelModel):
    conversation_id: str = Field(..., description="Standing conversation (thread) id")
    user_text: str = Field("", description="The user's message for this turn")
    grounding_handle: Optional[str] = Field(None, description="Document collection (vector store) id")
    use_web_search: bool = False
    attached_chart_data: Optional[Any] = None


class CitationDetails(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    page: Optional[str] = None
    paragraph: Optional[str] = None
    chapter: Optional[str] = None
    heading: Optional[str] = None
    section: Optional[str] = None
    regulation: Optional[str] = None
    federal_register: Optional[str] = None
    citation: Optional[str] = None

    def is_empty(self) -> bool:
        return not any(self.model_dump().values())


class Source(CamelModel):
    type: Literal["file", "web"]
    document: str
    section: str
    description: Optional[str] = None
    page: Optional[str] = None
    paragraph: Optional[str] = None
    chapter: Optional[str] = None
    heading: Optional[str] = None
    # the locator's dotted section number; `section` holds the display title
    section_number: Optional[str] = None
    regulation: Optional[str] = None
    federal_register: Optional[str] = None
    citation: Optional[str] = None


class TurnResult(CamelModel):
    content: str
    sources: List[Source] = Field(default_factory=list)
    web_search_used: bool = False
    web_search_had_results: bool = False


# --------------------------------------------------------------------------------------
# Turn modes: web search and document grounding never coexist within one turn
# --------------------------------------------------------------------------------------
class WebSearchMode(BaseModel):
    kind: Literal["web_search"] = "web_search"


class DocumentGroundedMode(BaseModel):
    kind: Literal["document_grounded"] = "document_grounded"
    grounding_handle: str


class PlainMode(BaseModel):
    kind: Literal["plain"] = "plain"


TurnMode = Annotated[Union[WebSearchMode, DocumentGroundedMode, PlainMode], Field(discriminator="kind")]


def turn_mode_for(request: TurnRequest) -> Union[WebSearchMode, DocumentGroundedMode, PlainMode]:
    if request.use_web_search:
        return WebSearchMode()
    if request.grounding_handle:
        return DocumentGroundedMode(grounding_handle=request.grounding_handle)
    return PlainMode()


# --------------------------------------------------------------------------------------
# Backend records
# --------------------------------------------------------------------------------------
class RunStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    REQUIRES_ACTION = "requires_action"
    CANCELLING = "cancelling"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    INCOMPLETE = "incomplete"

    @property
    def is_failure(self) -> bool:
        return self in {RunStatus.FAILED, RunStatus.CANCELLED, RunStatus.EXPIRED, RunStatus.INCOMPLETE}


class ToolCall(BaseModel):
    id: str
    function_name: str
    arguments: str = "{}"  # raw JSON as emitted by the model


class ToolOutput(BaseModel):
    tool_call_id: str
    output: str


class RunState(BaseModel):
    id: str
    status: RunStatus
    pending_tool_calls: List[ToolCall] = Field(default_factory=list)
    last_error: Optional[str] = None


class RunConfig(BaseModel):
    tools: List[Dict[str, Any]] = Field(default_factory=list)
    tool_resources: Optional[Dict[str, Any]] = None
    instructions: Optional[str] = None
    tool_choice: Optional[Union[str, Dict[str, Any]]] = None


class Annotation(BaseModel):
    kind: Literal["file_citation", "external_reference"]
    file_ref: Optional[str] = None
    quote: Optional[str] = None
    url: Optional[str] = None
    title: Optional[str] = None


class AssistantTextResult(BaseModel):
    raw_text: str = ""
    annotations: List[Annotation] = Field(default_factory=list)
    message_id: Optional[str] = None
    tools_used: List[str] = Field(default_factory=list)


class BackendMessage(BaseModel):
    id: str
    role: str  # 'user' or 'assistant'
    run_id: Optional[str] = None
    text: str = ""
    annotations: List[Annotation] = Field(default_factory=list)

"""
Core data model for a conversation turn.

These types cross module boundaries: the orchestration loop builds them,
the context manager sizes them, the retrieval engine produces chunks, and
the API serialises them.
"""
import uuid
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


Role = Literal["user", "assistant", "tool", "system"]

# Context window sizes selected from substrings of the model name
DEFAULT_CONTEXT_LIMIT = 4096
LARGE_MODEL_CONTEXT_LIMIT = 8192
SYSTEM_PROMPT_RESERVE = 500
RESPONSE_RESERVE = 1000


class Message(BaseModel):
    """A single persisted conversation message."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Role
    text: str = ""
    name: Optional[str] = None
    attachments: Optional[List[str]] = None

    def to_chat_dict(self) -> Dict[str, Any]:
        """Render the message in the model service's chat format."""
        data: Dict[str, Any] = {"role": self.role, "content": self.text}
        if self.name:
            data["name"] = self.name
        return data


class ConversationRequest(BaseModel):
    """One user turn."""

    thread_id: str
    model: str
    prompt: str
    rag_enabled: bool = False
    enabled_tools: List[str] = Field(default_factory=list)
    allowed_tools: List[str] = Field(default_factory=list)
    project_id: Optional[str] = None


class ToolSpec(BaseModel):
    """A capability advertised to the model."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    input_schema: Dict[str, Any]

    def to_model_tool(self) -> Dict[str, Any]:
        """Render as an entry of the chat request's ``tools`` list."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ContextBudget(BaseModel):
    """Token budget policy for a model, recomputed per request."""

    max_context_tokens: int = Field(DEFAULT_CONTEXT_LIMIT, ge=0)
    system_prompt_reserve: int = Field(SYSTEM_PROMPT_RESERVE, ge=0)
    response_reserve: int = Field(RESPONSE_RESERVE, ge=0)

    @classmethod
    def for_model(cls, model_name: Optional[str]) -> "ContextBudget":
        name = model_name or ""
        if "32k" in name:
            limit = 32768
        elif "16k" in name:
            limit = 16384
        elif "8k" in name or "large" in name:
            limit = LARGE_MODEL_CONTEXT_LIMIT
        else:
            limit = DEFAULT_CONTEXT_LIMIT
        return cls(max_context_tokens=limit)


class RetrievedChunk(BaseModel):
    """A ranked piece of retrieved context."""

    text: str
    similarity_score: float
    weight: float = Field(1.0, ge=0.0)
    source_id: str
    label: str = "Document"

    @property
    def effective_score(self) -> float:
        return self.similarity_score * self.weight


class ConversationRef(BaseModel):
    """A pointer to a related conversation in another thread."""

    id: str
    title: str
    snippet: str
    relevance_score: float
    project_id: Optional[str] = None


class ThreadSettings(BaseModel):
    """Per-thread retrieval settings."""

    top_k: int = Field(4, ge=1, le=50)
    context_tokens: int = Field(1024, ge=1, le=32768)


class TurnResult(BaseModel):
    """Outcome of a completed turn."""

    thread_id: str
    final_text: str
    tool_calls: List[ToolCall] = Field(default_factory=list)
    messages: List[Dict[str, Any]] = Field(default_factory=list)
    rounds: int = 0

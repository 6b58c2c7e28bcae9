"""
Schemas for LLM requests.

This module contains the Pydantic models threaded through the chat request
pipeline: the chat request document, generation options, and the provider
neutral HTTP request built from them.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProviderType(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    OLLAMA = "ollama"
    CUSTOM = "custom"


class ChatMessage(BaseModel):
    """One message of a chat conversation."""
    role: Literal["system", "user", "assistant"]
    content: str


class GenerationOptions(BaseModel):
    """
    Options for a single generation.

    ``json_schema`` (also accepted as ``schema``) requests structured output.
    Sampling fields and any extra keys are passed through to the provider.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    json_schema: Optional[Dict[str, Any]] = Field(default=None, alias="schema")
    schema_name: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    presence_penalty: Optional[float] = None
    frequency_penalty: Optional[float] = None
    seed: Optional[int] = None

    def passthrough(self) -> Dict[str, Any]:
        """Options forwarded verbatim in the request body."""
        return self.model_dump(exclude_none=True, exclude={"json_schema", "schema_name"})


class ChatRequest(BaseModel):
    """Input document of the chat request pipeline."""
    messages: List[ChatMessage]
    options: GenerationOptions = Field(default_factory=GenerationOptions)


class HttpRequest(BaseModel):
    """A provider-specific HTTP call ready to send."""
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Dict[str, Any] = Field(default_factory=dict)

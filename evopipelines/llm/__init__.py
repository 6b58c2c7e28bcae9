"""
Single-shot requests to chat model providers.

Builds a provider-specific HTTP call, sends it with retry and timeout
policies, and parses the JSON answer.
"""

from .schemas import ProviderType, ChatMessage, GenerationOptions, ChatRequest, HttpRequest
from .providers import LLMProvider, OpenAIProvider, OllamaProvider, get_provider
from .context import LLMContext, create_openai_context, create_ollama_context
from .steps import (
    build_payload_step,
    call_api_step,
    call_with_policies,
    extract_content_step,
    sanitize_json_text,
    parse_json_step,
    build_request_pipeline,
    generate_prompt_and_send,
    embed_texts,
    make_embed_fn
)
from .client import LLMClient

__all__ = [
    'ProviderType',
    'ChatMessage',
    'GenerationOptions',
    'ChatRequest',
    'HttpRequest',
    'LLMProvider',
    'OpenAIProvider',
    'OllamaProvider',
    'get_provider',
    'LLMContext',
    'create_openai_context',
    'create_ollama_context',
    'build_payload_step',
    'call_api_step',
    'call_with_policies',
    'extract_content_step',
    'sanitize_json_text',
    'parse_json_step',
    'build_request_pipeline',
    'generate_prompt_and_send',
    'embed_texts',
    'make_embed_fn',
    'LLMClient'
]

"""
AI Provider Integrations

Clients for the third-party AI APIs used by the pipeline:
- GptClient: OpenAI chat completions (required)
- DalleClient: image generation (optional)
- PerplexityClient: online search with citations (optional)
"""

from .base import AIResponse, TokenUsage, RetryConfig, BaseAIClient, ProviderCircuitBreaker
from .gpt import GptClient, parse_json_content
from .dalle import DalleClient, sanitize_prompt
from .perplexity import PerplexityClient

__all__ = [
    # Shared
    "AIResponse",
    "TokenUsage",
    "RetryConfig",
    "BaseAIClient",
    "ProviderCircuitBreaker",
    # Clients
    "GptClient",
    "parse_json_content",
    "DalleClient",
    "sanitize_prompt",
    "PerplexityClient",
]

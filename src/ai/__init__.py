"""
AI Layer

- Model selection and price tables (models)
- Provider error taxonomy (errors)
- Budget-aware gateway over the provider clients (src.ai.gateway,
  imported directly: it depends on src.integrations)
"""

from src.ai.errors import (
    AIError,
    ConfigurationError,
    RateLimitError,
    InsufficientQuotaError,
    ContextTooLongError,
    InvalidRequestError,
    ServerError,
    CircuitOpenError,
    UnauthorizedError,
    UnknownAIError,
    BudgetExceededError,
)
from src.ai.models import ModelSelector, ModelChoice, estimate_cost, estimate_tokens, image_cost

__all__ = [
    # Errors
    "AIError",
    "ConfigurationError",
    "RateLimitError",
    "InsufficientQuotaError",
    "ContextTooLongError",
    "InvalidRequestError",
    "ServerError",
    "CircuitOpenError",
    "UnauthorizedError",
    "UnknownAIError",
    "BudgetExceededError",
    # Models
    "ModelSelector",
    "ModelChoice",
    "estimate_cost",
    "estimate_tokens",
    "image_cost",
]

"""LLM provider clients and the turn router.

Three backends, one protocol (base.ProviderClient):
  anthropic   Messages API, request-scoped prompt caching
  gemini      generateContent, cachedContents handles, relaxed safetySettings
  deepseek    OpenAI-compatible chat completions

router.ProviderRouter picks the model, reuses cached context handles from an
injected ContextCache, retries once on an empty reply and falls back once on
a content-policy rejection.
"""

from .anthropic import AnthropicProvider  # noqa: F401
from .base import (  # noqa: F401
    API_KEY_ENV,
    Completion,
    CompletionRequest,
    ContentPolicyError,
    EmptyCompletionError,
    HttpProvider,
    MissingCredentialsError,
    ProviderClient,
    ProviderError,
    api_key_for,
)
from .cache import ContextCache, content_hash  # noqa: F401
from .deepseek import DeepSeekProvider  # noqa: F401
from .gemini import GeminiProvider  # noqa: F401
from .router import (  # noqa: F401
    PROVIDER_CLASSES,
    ProviderRouter,
    RoutedCompletion,
    effective_unsafe,
    make_client,
    select_model,
    trim_history,
)

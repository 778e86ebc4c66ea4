"""Switchyard: one content-generation interface over many LLM backends.

Public API:
    - CanonicalRequest / CanonicalResponse: provider-neutral content model
    - Config: Configuration dataclass
    - RuntimeContext: owned override, session and provider-selection state
    - create_content_generator(): build the generator for a Config
"""

from __future__ import annotations

import logging

from switchyard.config import Config
from switchyard.content import (
    CanonicalRequest,
    CanonicalResponse,
    Candidate,
    EmbedRequest,
    EmbedResult,
    FinishReason,
    GenerationConfig,
    OpaquePart,
    TextPart,
    TokenCount,
    Turn,
    Usage,
)
from switchyard.context import RuntimeContext
from switchyard.credentials import ProviderCredentials
from switchyard.errors import (
    APIError,
    AuthenticationError,
    CliNotFoundError,
    ConfigurationError,
    NoStreamBodyError,
    ProtocolError,
    RateLimitError,
    SwitchyardError,
    TransportError,
    UnsupportedOperationError,
    ValidationError,
)
from switchyard.generators import (
    ContentGenerator,
    GeneratorCapabilities,
    create_content_generator,
    estimate_tokens,
)
from switchyard.registry import AuthType, ProviderDescriptor, default_providers
from switchyard.retry import RetryPolicy

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("switchyard")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("switchyard").addHandler(logging.NullHandler())

__all__ = [
    "APIError",
    "AuthType",
    "AuthenticationError",
    "CanonicalRequest",
    "CanonicalResponse",
    "Candidate",
    "CliNotFoundError",
    "Config",
    "ConfigurationError",
    "ContentGenerator",
    "EmbedRequest",
    "EmbedResult",
    "FinishReason",
    "GenerationConfig",
    "GeneratorCapabilities",
    "NoStreamBodyError",
    "OpaquePart",
    "ProtocolError",
    "ProviderCredentials",
    "ProviderDescriptor",
    "RateLimitError",
    "RetryPolicy",
    "RuntimeContext",
    "SwitchyardError",
    "TextPart",
    "TokenCount",
    "TransportError",
    "Turn",
    "UnsupportedOperationError",
    "Usage",
    "ValidationError",
    "create_content_generator",
    "default_providers",
    "estimate_tokens",
]

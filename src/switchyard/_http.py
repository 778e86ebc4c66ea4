"""Small HTTP-related constants shared across Switchyard.

This module is intentionally tiny to avoid circular imports and drift.
"""

from __future__ import annotations

# Retryable status codes shared by provider mapping and core retry.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})

# Status codes that mean "the credential was rejected".
AUTH_STATUS_CODES: frozenset[int] = frozenset({401, 403})

# Provider-reported error types that mean the same thing.
AUTH_ERROR_TYPES: frozenset[str] = frozenset(
    {"authentication_error", "permission_error", "invalid_api_key"}
)

DEFAULT_USER_AGENT = "switchyard/0.1"

"""Security configuration constants for the gateway API.

This module centralizes security-related configuration including:
- Sensitive keys that should be sanitized from logs
- Which error envelope fields each environment may expose
"""

# Keys redacted from structured logs. Matching is by case-insensitive
# substring, so "xai_api_key" and the FMP "apikey" query parameter are covered.
SENSITIVE_KEYS: set[str] = {
    # Credentials for upstream services
    "secret",
    "token",
    "access_token",
    "refresh_token",
    "authorization",
    "api_key",
    "apikey",
    "key",
    "bearer",
    "password",
    "session_id",
    # Investor profile data that identifies a person
    "email",
    "phone",
    "address",
    "account_number",
    # Headers
    "set-cookie",
    "cookie",
    "x-api-key",
    "x-session-id",
    "auth",
}

# In production, error responses only carry these fields
PRODUCTION_ERROR_FIELDS: set[str] = {
    "correlation_id",
    "type",
    "retryable",
}

DEVELOPMENT_ERROR_FIELDS: set[str] = PRODUCTION_ERROR_FIELDS | {
    "details",
    "traceback",
    "exception_type",
    "validation_errors",
}


def get_allowed_error_fields(environment: str) -> set[str]:
    """Get allowed error response fields based on environment.

    Args:
        environment: The application environment (production, development, etc.)

    Returns:
        Set of allowed field names for error responses
    """
    if environment == "production":
        return PRODUCTION_ERROR_FIELDS.copy()
    return DEVELOPMENT_ERROR_FIELDS.copy()


def is_sensitive_key(key: str) -> bool:
    """Check if a key should be considered sensitive and redacted."""
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in SENSITIVE_KEYS)

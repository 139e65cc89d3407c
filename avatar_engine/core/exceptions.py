"""
Custom exception hierarchy for the avatar engine.

All application exceptions inherit from AvatarEngineError.
"""


class AvatarEngineError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(AvatarEngineError):
    """Invalid or missing configuration (fatal for the current turn)."""

    pass


# =============================================================================
# Persistence Errors
# =============================================================================


class PersistenceError(AvatarEngineError):
    """Loading or saving session state failed."""

    pass


# =============================================================================
# LLM Errors
# =============================================================================


class LLMError(AvatarEngineError):
    """Base for LLM-related errors."""

    pass


class LLMTimeoutError(LLMError):
    """LLM call timed out."""

    pass


class LLMRateLimitError(LLMError):
    """LLM rate limit exceeded."""

    pass


class LLMResponseParseError(LLMError):
    """Failed to parse LLM response."""

    pass


# =============================================================================
# Session Errors
# =============================================================================


class SessionError(AvatarEngineError):
    """Session-related error."""

    pass


class ValidationError(AvatarEngineError):
    """Input validation failed."""

    pass

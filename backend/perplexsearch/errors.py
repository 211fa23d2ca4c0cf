"""
Exception taxonomy for the chat core.

Cancellation is deliberately absent: a user stop is a normal termination
path, never an exception that reaches callers.
"""

from typing import Optional


class ChatError(Exception):
    """Base class for all errors raised by the chat core."""


class ConfigurationError(ChatError):
    """Settings are unusable (unknown model id, malformed stored data)."""


PROVIDER_DISPLAY_NAMES = {
    "perplexity": "Perplexity",
    "google": "Google",
    "openai": "OpenAI",
    "anthropic": "Anthropic",
}


class MissingCredentialError(ConfigurationError):
    """The provider selected by the active model has no credential.

    Raised before any network activity so no partial turn is created.
    """

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(
            f"Missing API key for {PROVIDER_DISPLAY_NAMES.get(provider, provider)}. Add it in Settings."
        )


class ProviderError(ChatError):
    """A provider rejected the request or returned an unusable payload."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CrossOriginError(ProviderError):
    """Best-effort classification of a request blocked by origin policy.

    The signal is heuristic (an auth-class status with no parseable error
    body), so callers should treat it as guidance, not a diagnosis.
    """


class SubmissionRejected(ChatError):
    """A turn could not be started (empty input or a stream already running)."""


class ConversationNotFoundError(ChatError):
    """No conversation with the requested id exists."""


class FolderNotFoundError(ChatError):
    """No folder with the requested id exists."""

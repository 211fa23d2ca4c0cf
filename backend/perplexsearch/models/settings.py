"""
User settings model definitions.
Active model, per-provider credentials and free-text instructions.
"""

from typing import Dict, Literal, Optional
from pydantic import BaseModel, ConfigDict, field_validator

from perplexsearch.llm.registry import Provider, get_model

DEFAULT_MODEL = "sonar"

# At most one credential per provider; Ollama runs locally without one
CREDENTIAL_FIELDS: Dict[Provider, str] = {
    Provider.PERPLEXITY: "api_key",
    Provider.GOOGLE: "google_api_key",
    Provider.OPENAI: "openai_api_key",
    Provider.ANTHROPIC: "anthropic_api_key",
}


class AppSettings(BaseModel):
    """
    Per-user preferences persisted alongside conversations.

    ``model`` is checked against the model registry on construction and on
    assignment, so an unknown id surfaces as a ConfigurationError when the
    settings are loaded rather than when a request is sent.
    """
    model_config = ConfigDict(validate_assignment=True, protected_namespaces=())

    theme: Literal["light", "dark", "system"] = "system"
    model: str = DEFAULT_MODEL
    api_key: str = ""
    google_api_key: str = ""
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    system_instruction: str = ""
    project_context: str = ""
    ollama_base_url: Optional[str] = None

    @field_validator("model")
    @classmethod
    def _known_model(cls, value: str) -> str:
        # Raises ConfigurationError (not a ValueError) so it is not
        # folded into a generic ValidationError.
        get_model(value)
        return value

    def credential_for(self, provider: Provider) -> Optional[str]:
        """Return the credential string for ``provider`` (None if keyless)."""
        field = CREDENTIAL_FIELDS.get(provider)
        if field is None:
            return None
        return getattr(self, field)

"""
Settings router.
Reads and updates the user's preferences and lists the available models.
"""

import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from perplexsearch.chat.state import AppState
from perplexsearch.llm.registry import list_models
from perplexsearch.models.settings import CREDENTIAL_FIELDS, AppSettings
from perplexsearch.routers.deps import get_app_state
from perplexsearch.utils.encryption import mask_api_key

logger = logging.getLogger(__name__)
router = APIRouter()


class SettingsUpdate(BaseModel):
    """Partial settings update; omitted fields keep their value."""
    theme: Optional[Literal["light", "dark", "system"]] = None
    model: Optional[str] = None
    api_key: Optional[str] = None
    google_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    system_instruction: Optional[str] = None
    project_context: Optional[str] = None
    ollama_base_url: Optional[str] = None

    model_config = {"protected_namespaces": ()}


class ModelInfo(BaseModel):
    id: str
    name: str
    description: str
    provider: str


def _masked(settings: AppSettings) -> Dict[str, Any]:
    data = settings.model_dump()
    for field in CREDENTIAL_FIELDS.values():
        data[field] = mask_api_key(data[field])
    return data


@router.get("")
async def get_settings(state: AppState = Depends(get_app_state)) -> Dict[str, Any]:
    """Current settings with credentials masked."""
    return _masked(state.settings)


@router.put("")
async def update_settings(
    data: SettingsUpdate,
    state: AppState = Depends(get_app_state),
) -> Dict[str, Any]:
    """
    Apply a partial update.

    A credential echoed back in its masked form is ignored, so clients
    can round-trip the GET payload without erasing keys. Explicit nulls
    leave a field unchanged.
    """
    updates = {
        key: value
        for key, value in data.model_dump(exclude_unset=True).items()
        if value is not None
    }
    for field in CREDENTIAL_FIELDS.values():
        if field in updates:
            value = updates[field]
            current = getattr(state.settings, field)
            if current and value == mask_api_key(current):
                del updates[field]
            else:
                updates[field] = value.strip()

    settings = state.update_settings(updates)
    changed = sorted(updates)
    logger.info(f"Settings updated: {', '.join(changed) or 'nothing'}")
    return _masked(settings)


@router.get("/models", response_model=List[ModelInfo])
async def get_models() -> List[ModelInfo]:
    return [
        ModelInfo(id=m.id, name=m.name, description=m.description, provider=m.provider.value)
        for m in list_models()
    ]

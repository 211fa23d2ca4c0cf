"""
Folders router.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from perplexsearch.chat.state import AppState
from perplexsearch.models.conversation import Folder
from perplexsearch.routers.deps import get_app_state

logger = logging.getLogger(__name__)
router = APIRouter()


class FolderCreate(BaseModel):
    name: str


@router.get("", response_model=List[Folder])
async def list_folders(state: AppState = Depends(get_app_state)) -> List[Folder]:
    return state.folders


@router.post("", response_model=Folder)
async def create_folder(
    data: FolderCreate,
    state: AppState = Depends(get_app_state),
) -> Folder:
    return state.create_folder(data.name)


@router.delete("/{folder_id}")
async def delete_folder(
    folder_id: str,
    state: AppState = Depends(get_app_state),
) -> dict:
    """Delete a folder; its conversations are kept and unfiled."""
    unfiled = state.delete_folder(folder_id)
    return {"deleted": True, "unfiled": unfiled}

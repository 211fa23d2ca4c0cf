"""
Conversations router.
Lists, reads, files and deletes conversations.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from perplexsearch.chat.orchestrator import ChatOrchestrator
from perplexsearch.chat.state import AppState
from perplexsearch.models.conversation import DEFAULT_TITLE, Conversation
from perplexsearch.routers.deps import get_app_state, get_orchestrator

logger = logging.getLogger(__name__)
router = APIRouter()


class ConversationSummary(BaseModel):
    """Sidebar entry for a conversation."""
    id: str
    title: str
    created_at: int
    updated_at: int
    folder_id: Optional[str] = None
    message_count: int = 0
    streaming: bool = False


class ConversationUpdate(BaseModel):
    title: str


class FolderAssignment(BaseModel):
    folder_id: Optional[str] = None


@router.get("", response_model=List[ConversationSummary])
async def list_conversations(
    folder_id: Optional[str] = None,
    state: AppState = Depends(get_app_state),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> List[ConversationSummary]:
    """List conversations, most recently active first."""
    return [
        ConversationSummary(
            id=c.id,
            title=c.title,
            created_at=c.created_at,
            updated_at=c.updated_at,
            folder_id=c.folder_id,
            message_count=len(c.messages),
            streaming=orchestrator.is_busy(c.id),
        )
        for c in state.conversations
        if folder_id is None or c.folder_id == folder_id
    ]


@router.get("/{conversation_id}", response_model=Conversation)
async def get_conversation(
    conversation_id: str,
    state: AppState = Depends(get_app_state),
) -> Conversation:
    return state.get_conversation(conversation_id)


@router.put("/{conversation_id}", response_model=Conversation)
async def rename_conversation(
    conversation_id: str,
    data: ConversationUpdate,
    state: AppState = Depends(get_app_state),
) -> Conversation:
    return state.rename_conversation(conversation_id, data.title.strip() or DEFAULT_TITLE)


@router.put("/{conversation_id}/folder", response_model=Conversation)
async def move_to_folder(
    conversation_id: str,
    data: FolderAssignment,
    state: AppState = Depends(get_app_state),
) -> Conversation:
    """File a conversation in a folder (``folder_id: null`` unfiles it)."""
    return state.move_to_folder(conversation_id, data.folder_id)


@router.delete("/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    state: AppState = Depends(get_app_state),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict:
    orchestrator.stop(conversation_id)
    state.delete_conversation(conversation_id)
    return {"deleted": True}


@router.delete("")
async def clear_history(
    state: AppState = Depends(get_app_state),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Delete every conversation and folder."""
    for convo in state.conversations:
        orchestrator.stop(convo.id)
    state.clear_history()
    return {"cleared": True}

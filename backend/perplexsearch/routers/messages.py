"""
Messages router.
Submits chat turns and streams the reply as server-sent events.
"""

import asyncio
import json
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from perplexsearch.chat.orchestrator import ChatOrchestrator
from perplexsearch.chat.prompts import DEFAULT_MODE
from perplexsearch.models.message import Attachment
from perplexsearch.routers.deps import get_orchestrator

logger = logging.getLogger(__name__)
router = APIRouter()


class MessageCreate(BaseModel):
    """Request body for submitting a user turn."""
    query: str = ""
    conversation_id: Optional[str] = None
    mode: str = DEFAULT_MODE
    attachments: List[Attachment] = Field(default_factory=list)


def _sse(event: dict) -> str:
    return f"data: {json.dumps(event)}\n\n"


@router.post("")
async def send_message(
    data: MessageCreate,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    """
    Submit a turn and stream the reply.

    Events: ``start`` (conversation id and placeholder timestamp), then
    ``chunk`` events, then one of ``done``, ``error`` or ``cancelled``.
    Submission errors (missing credential, busy conversation) are
    returned as HTTP errors before the stream opens.
    """
    stream = await orchestrator.start_turn(
        data.query,
        conversation_id=data.conversation_id,
        mode=data.mode,
        attachments=data.attachments,
    )

    async def generate_stream():
        # The orchestrator task keeps running if the client goes away,
        # so the stored turn is always completed.
        try:
            yield _sse({
                "type": "start",
                "conversation_id": stream.conversation_id,
                "message_timestamp": stream.placeholder_timestamp,
            })
            async for event in stream.events():
                yield _sse(event)
        except asyncio.CancelledError:
            logger.info(
                f"Client disconnected mid-stream for conversation "
                f"{stream.conversation_id}, turn continues"
            )
            raise

    return StreamingResponse(
        generate_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )


@router.post("/{conversation_id}/stop")
async def stop_message(
    conversation_id: str,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Cancel the streaming turn of a conversation, keeping partial content."""
    if not orchestrator.stop(conversation_id):
        raise HTTPException(status_code=404, detail="No active stream for this conversation")
    return {"stopped": True}

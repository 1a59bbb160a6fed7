"""
Conversations API. Read-only view of archived voice conversations.

GET /v1/conversations                                — List conversations (newest first)
GET /v1/conversations/{conversation_id}              — Full conversation record
GET /v1/conversations/{conversation_id}/summary      — Summary
GET /v1/conversations/{conversation_id}/extracted-data — Extracted application data
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from ..core.dependencies import get_conversations
from ..core.errors import ConversationNotFound
from ..services.conversation_store import ConversationStore

logger = logging.getLogger(__name__)

conversations_router = APIRouter(prefix="/conversations", tags=["conversations"])


@conversations_router.get("")
async def list_conversations(
    limit: Optional[int] = None,
    store: ConversationStore = Depends(get_conversations),
):
    """List archived conversations."""
    conversations = await store.list_conversations(limit=limit)
    return {"count": len(conversations), "conversations": conversations}


@conversations_router.get("/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    store: ConversationStore = Depends(get_conversations),
):
    try:
        return await store.get_conversation(conversation_id)
    except ConversationNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@conversations_router.get("/{conversation_id}/summary")
async def get_summary(
    conversation_id: str,
    store: ConversationStore = Depends(get_conversations),
):
    try:
        return await store.get_summary(conversation_id)
    except ConversationNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@conversations_router.get("/{conversation_id}/extracted-data")
async def get_extracted_data(
    conversation_id: str,
    store: ConversationStore = Depends(get_conversations),
):
    try:
        return await store.get_extracted_data(conversation_id)
    except ConversationNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

"""FastAPI route definitions for the Collaborator API."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request

from collaborator.api.schemas import (
    FeedbackRequest,
    FeedbackResponse,
    HealthResponse,
    MessageRequest,
    MessageResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_agent(request: Request):
    """Retrieve the agent built during the FastAPI lifespan (see ``server.py``)."""
    agent = getattr(request.app.state, "agent", None)
    if agent is None:
        raise HTTPException(
            status_code=503,
            detail="The agent is still starting up. Please try again in a moment.",
        )
    return agent


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/messages", response_model=MessageResponse)
async def post_message(request: MessageRequest, http_request: Request):
    """Route one chat message and return the reply to post.

    The router makes blocking calls (Claude, Graph), so it runs in a worker
    thread via ``asyncio.to_thread`` and the event loop stays free for other
    conversations.
    """
    agent = _get_agent(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        reply = await asyncio.to_thread(
            agent.handle_message,
            text=request.text,
            conversation_id=request.conversation_id,
            user_id=request.user_id,
            user_name=request.user_name,
            user_email=request.user_email,
            activity_id=request.activity_id,
            is_group=request.is_group,
            mentioned=request.mentioned,
        )
    except Exception as e:
        logger.exception("[%s] Error processing message", request_id)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e

    if reply is None:
        return MessageResponse(status="recorded", conversation_id=request.conversation_id)

    logger.info(
        "[%s] %s via %s", request_id, reply.status, reply.capability or "direct reply",
    )
    return MessageResponse(
        reply=reply.text,
        reply_id=reply.reply_id,
        status=reply.status,
        conversation_id=request.conversation_id,
    )


@router.post("/feedback", response_model=FeedbackResponse)
async def post_feedback(request: FeedbackRequest, http_request: Request):
    """Record a like/dislike on a previous reply."""
    agent = _get_agent(http_request)
    recorded = await asyncio.to_thread(
        agent.record_feedback, request.reply_id, request.reaction, request.feedback,
    )
    return FeedbackResponse(recorded=recorded)

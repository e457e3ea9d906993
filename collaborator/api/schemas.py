"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class MessageRequest(BaseModel):
    """An inbound chat message relayed by the chat platform adapter."""

    text: str = Field(..., min_length=1, max_length=4000, description="Message text")
    conversation_id: str = Field(..., min_length=1, max_length=200)
    user_id: str = Field(..., min_length=1, max_length=200, description="Sender id")
    user_name: str = Field("User", max_length=200)
    user_email: str | None = Field(None, max_length=320, description="Sender UPN / e-mail")
    activity_id: str | None = Field(None, max_length=200, description="Platform message id")
    is_group: bool = Field(False, description="Whether the conversation is a group chat")
    mentioned: bool = Field(False, description="Whether the bot was @mentioned")


class MessageResponse(BaseModel):
    """What to post back to the conversation.

    ``reply`` is ``None`` (status ``recorded``) for group messages that did
    not mention the bot.
    """

    reply: str | None = Field(None, description="Text to send to the conversation")
    reply_id: str | None = Field(None, description="Id to attach feedback to")
    status: Literal["completed", "failed", "recorded"]
    conversation_id: str


class FeedbackRequest(BaseModel):
    reply_id: str = Field(..., min_length=1, max_length=200)
    reaction: Literal["like", "dislike"]
    feedback: dict[str, Any] | None = None


class FeedbackResponse(BaseModel):
    recorded: bool


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "collaborator"

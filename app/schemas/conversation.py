"""Conversation and tool confirmation response schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class ConversationResponse(BaseModel):
    id: str
    user_id: str
    organization_id: str
    agent_id: str
    title: str
    model: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ToolConfirmationResponse(BaseModel):
    id: str
    conversation_id: str
    message_id: str
    tool_name: str
    input: Any
    status: str
    result: Any
    resolved_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}

"""
Pydantic schemas for the chat API.

Separated from the route handler so they are reusable across
the codebase (background workers, tests).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from backend.app.chat.chat_service import ChatTurn
from backend.app.chat.models import ChatMessage, DeliveryOutcome, MessageRole


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class ChatMessageRequest(BaseModel):
    """Request body for POST /api/v1/chat/messages."""
    message: str = Field(
        ..., max_length=8000,
        description="User text; trimmed server-side and must not be blank",
        examples=["Qual o prazo do desafio?"],
    )
    session_id: str = Field(
        ..., max_length=128,
        description="Opaque conversation key of the challenge thread",
        examples=["sess-42"],
    )


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class ChatMessageOut(BaseModel):
    """A single transcript entry."""
    id: str
    role: MessageRole
    content: str
    timestamp: str
    is_html: bool = False
    is_startup_list: bool = False

    @classmethod
    def from_message(cls, message: ChatMessage) -> "ChatMessageOut":
        return cls(**message.to_dict())


class AttemptOut(BaseModel):
    attempt: int
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    duration_ms: float = 0.0


class ChatTurnResponse(BaseModel):
    """Response for POST /api/v1/chat/messages."""
    reply: str = Field(..., description="Reply text or fallback text")
    outcome: DeliveryOutcome
    attempts: int = Field(..., ge=1, description="HTTP attempts made")
    attempt_log: List[AttemptOut] = Field(default_factory=list)
    is_html: bool = False
    is_startup_list: bool = False
    startup_cards: Optional[Dict[str, Any]] = None
    user_message: ChatMessageOut
    assistant_message: ChatMessageOut

    @classmethod
    def from_turn(cls, turn: ChatTurn) -> "ChatTurnResponse":
        return cls(
            reply=turn.reply,
            outcome=turn.delivery.outcome,
            attempts=turn.delivery.attempt_count,
            attempt_log=[AttemptOut(**a.to_dict()) for a in turn.delivery.attempts],
            is_html=turn.assistant_message.is_html,
            is_startup_list=turn.assistant_message.is_startup_list,
            startup_cards=turn.startup_cards,
            user_message=ChatMessageOut.from_message(turn.user_message),
            assistant_message=ChatMessageOut.from_message(turn.assistant_message),
        )


class SessionResponse(BaseModel):
    """Response for POST /api/v1/chat/sessions."""
    session_id: str
    welcome_message: ChatMessageOut


class DeliveryConfigResponse(BaseModel):
    """Active webhook delivery policy (GET /api/v1/chat/config)."""
    endpoint_host: str
    max_attempts: int
    retry_delay_seconds: float
    timeout_seconds: float

"""
models.py — Shared data structures for the chat delivery path.

Defines:
    • DeliveryOutcome — tagged result of one webhook delivery
    • OutboundRequest — one chat turn bound for the webhook
    • AttemptRecord   — single HTTP attempt record
    • DeliveryResult  — final outcome + text + attempt history
    • MessageRole / ChatMessage — chat transcript entries

═══════════════════════════════════════════════════════════════════════════
OUTCOMES AND FALLBACK TEXT
═══════════════════════════════════════════════════════════════════════════

    Outcome         Cause                                   Text returned
    ─────────────   ─────────────────────────────────────   ───────────────────
    REPLY           2xx + JSON carrying "output"            the reply itself
    UNPROCESSABLE   2xx + empty body / bad JSON / no        FALLBACK_UNPROCESSABLE
                    "output" field (never retried)
    UNAVAILABLE     every attempt failed at transport       FALLBACK_UNAVAILABLE
                    level, or delivery was aborted

The chat UI has no error path, so every outcome collapses to text at the
boundary. The tag is kept internally so callers and tests can tell the
two failure classes apart without matching strings.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


FALLBACK_UNPROCESSABLE = "Desculpe, não consegui processar sua mensagem."
FALLBACK_UNAVAILABLE = (
    "Desculpe, o servidor está temporariamente indisponível. "
    "Por favor, tente novamente em alguns minutos."
)


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class DeliveryOutcome(str, Enum):
    """Tagged outcome of a webhook delivery."""
    REPLY         = "reply"
    UNPROCESSABLE = "unprocessable"
    UNAVAILABLE   = "unavailable"

    @property
    def fallback_text(self) -> Optional[str]:
        if self is DeliveryOutcome.UNPROCESSABLE:
            return FALLBACK_UNPROCESSABLE
        if self is DeliveryOutcome.UNAVAILABLE:
            return FALLBACK_UNAVAILABLE
        return None


class MessageRole(str, Enum):
    USER      = "user"
    ASSISTANT = "assistant"


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class OutboundRequest:
    """One chat turn bound for the webhook. Not retained after the call."""
    message: str
    session_id: str

    def to_wire(self) -> Dict[str, str]:
        """JSON body expected by the webhook (camelCase session key)."""
        return {"message": self.message, "sessionId": self.session_id}


@dataclass
class AttemptRecord:
    """Record of a single HTTP attempt against the webhook."""
    attempt: int
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt": self.attempt,
            "status_code": self.status_code,
            "error_message": self.error_message,
            "duration_ms": round(self.duration_ms, 1),
        }


@dataclass
class DeliveryResult:
    """
    Final result of one `DeliveryClient.deliver_result` call.

    Exactly one is produced per OutboundRequest, after 1..max_attempts
    attempts. `text` is always displayable: the reply for REPLY, the fixed
    fallback otherwise.
    """
    outcome: DeliveryOutcome
    text: str
    session_id: str = ""
    attempts: List[AttemptRecord] = field(default_factory=list)

    @classmethod
    def reply(cls, text: str, session_id: str, attempts: List[AttemptRecord]) -> "DeliveryResult":
        return cls(DeliveryOutcome.REPLY, text, session_id, attempts)

    @classmethod
    def fallback(
        cls,
        outcome: DeliveryOutcome,
        session_id: str,
        attempts: List[AttemptRecord],
    ) -> "DeliveryResult":
        return cls(outcome, outcome.fallback_text or "", session_id, attempts)

    @property
    def is_reply(self) -> bool:
        return self.outcome is DeliveryOutcome.REPLY

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)


@dataclass
class ChatMessage:
    """A transcript entry, as stored and rendered by the chat front end."""
    role: MessageRole
    content: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=_now)
    is_html: bool = False
    is_startup_list: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "is_html": self.is_html,
            "is_startup_list": self.is_startup_list,
        }

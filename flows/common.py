"""Types shared by the state handlers."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from conversation_state import Conversation, Seller
from utils.helpers import normalize_text

if TYPE_CHECKING:
    from workflow import ConversationEngine


@dataclass
class SideEffect:
    kind: str
    detail: Dict[str, Any] = field(default_factory=dict)


@dataclass
class HandleResult:
    reply: str
    side_effects: List[SideEffect] = field(default_factory=list)

    def has_effect(self, kind: str) -> bool:
        return any(e.kind == kind for e in self.side_effects)


@dataclass
class Turn:
    """One inbound message being handled, plus what it changed so far."""

    engine: "ConversationEngine"
    phone: str
    text: str
    photos: List[str]
    conversation: Conversation
    seller: Optional[Seller]
    side_effects: List[SideEffect] = field(default_factory=list)

    @property
    def lowered(self) -> str:
        return normalize_text(self.text)

    def effect(self, kind: str, **detail: Any) -> None:
        self.side_effects.append(SideEffect(kind, detail))


def register_confusion(turn: Turn, normal_reply: str, fallback_reply: str) -> str:
    """
    Count a turn that moved nothing forward. From the threshold on, answer with
    the numbered fallback menu (and remember it was shown so digits are honoured).
    """
    ctx = turn.conversation.context
    ctx.confusion_count += 1
    if ctx.confusion_count >= turn.engine.confusion_threshold:
        if hasattr(ctx, "fallback_shown"):
            ctx.fallback_shown = True  # type: ignore[attr-defined]
        turn.effect("fallback_menu", count=ctx.confusion_count)
        return fallback_reply
    return normal_reply


def reset_confusion(turn: Turn) -> None:
    turn.conversation.context.confusion_count = 0

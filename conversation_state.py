"""
Conversation cursor for one phone number.

Each state owns a precisely-typed context model (CONTEXT_TYPES); the context is
re-initialized whenever the conversation transitions to another state.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict

from utils.helpers import parse_timestamp


class ConversationState(str, Enum):
    NEW = "new"
    AWAITING_ACCOUNT_CHECK = "awaiting_account_check"
    AWAITING_EXISTING_EMAIL = "awaiting_existing_email"
    AWAITING_NEW_EMAIL = "awaiting_new_email"
    AWAITING_EMAIL = "awaiting_email"
    AUTHORIZED = "authorized"
    SELL_STARTED = "sell_started"
    SELL_DRAFT_CHOICE = "sell_draft_choice"
    SELL_COLLECTING = "sell_collecting"
    SELL_DETAILS = "sell_details"
    SELL_PHOTOS = "sell_photos"
    SELL_CONFIRMING = "sell_confirming"
    SELL_EDITING = "sell_editing"


AUTH_STATES = {
    ConversationState.NEW,
    ConversationState.AWAITING_ACCOUNT_CHECK,
    ConversationState.AWAITING_EXISTING_EMAIL,
    ConversationState.AWAITING_NEW_EMAIL,
    ConversationState.AWAITING_EMAIL,
}

SELL_STATES = {
    ConversationState.SELL_STARTED,
    ConversationState.SELL_DRAFT_CHOICE,
    ConversationState.SELL_COLLECTING,
    ConversationState.SELL_DETAILS,
    ConversationState.SELL_PHOTOS,
    ConversationState.SELL_CONFIRMING,
    ConversationState.SELL_EDITING,
}


class StateContext(BaseModel):
    model_config = ConfigDict(extra="ignore")

    confusion_count: int = 0


class MenuContext(StateContext):
    """new, authorized, sell_started"""

    fallback_shown: bool = False


class AuthCheckContext(StateContext):
    """awaiting_account_check"""


class EmailLookupContext(StateContext):
    """awaiting_existing_email / awaiting_new_email"""

    email_attempts: int = 0


class EmailVerifyContext(StateContext):
    """awaiting_email (re-verification of a known seller)"""

    email_attempts: int = 0
    pending_intent: Optional[str] = None
    prompt_shown: bool = False


class DraftChoiceContext(StateContext):
    """sell_draft_choice"""

    draft_id: str


class SellContext(StateContext):
    """sell_collecting, sell_details, sell_photos, sell_confirming, sell_editing"""

    draft_id: str
    asked_details: bool = False
    fallback_shown: bool = False


CONTEXT_TYPES: Dict[ConversationState, Type[StateContext]] = {
    ConversationState.NEW: MenuContext,
    ConversationState.AWAITING_ACCOUNT_CHECK: AuthCheckContext,
    ConversationState.AWAITING_EXISTING_EMAIL: EmailLookupContext,
    ConversationState.AWAITING_NEW_EMAIL: EmailLookupContext,
    ConversationState.AWAITING_EMAIL: EmailVerifyContext,
    ConversationState.AUTHORIZED: MenuContext,
    ConversationState.SELL_STARTED: MenuContext,
    ConversationState.SELL_DRAFT_CHOICE: DraftChoiceContext,
    ConversationState.SELL_COLLECTING: SellContext,
    ConversationState.SELL_DETAILS: SellContext,
    ConversationState.SELL_PHOTOS: SellContext,
    ConversationState.SELL_CONFIRMING: SellContext,
    ConversationState.SELL_EDITING: SellContext,
}


def parse_context(state: ConversationState, raw: Optional[Dict[str, Any]]) -> StateContext:
    """Load a persisted context; anything that doesn't fit the state's shape falls back to a clean one."""
    model = CONTEXT_TYPES[state]
    try:
        return model(**(raw or {}))
    except Exception:
        if model in (DraftChoiceContext, SellContext):
            # no draft reference to recover; the caller will treat this like a lost draft
            return model(draft_id="")
        return model()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Seller:
    id: str
    email: str
    phone: Optional[str] = None
    name: Optional[str] = None
    paypal_email: Optional[str] = None
    commission_rate: int = 18

    def matches_email(self, email: str) -> bool:
        candidate = email.strip().lower()
        return any(
            e and e.strip().lower() == candidate
            for e in (self.email, self.paypal_email)
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "phone": self.phone,
            "name": self.name,
            "paypal_email": self.paypal_email,
            "commission_rate": self.commission_rate,
        }

    @classmethod
    def from_record(cls, rec: Dict[str, Any]) -> "Seller":
        return cls(
            id=str(rec.get("id")),
            email=rec.get("email") or "",
            phone=rec.get("phone"),
            name=rec.get("name"),
            paypal_email=rec.get("paypal_email"),
            commission_rate=int(rec.get("commission_rate") or 18),
        )


@dataclass
class Conversation:
    phone: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: ConversationState = ConversationState.NEW
    context: StateContext = field(default_factory=MenuContext)
    is_authorized: bool = False
    seller_id: Optional[str] = None
    authorized_at: Optional[datetime] = None
    auth_attempts: int = 0
    last_auth_attempt: Optional[datetime] = None
    processed_message_ids: List[str] = field(default_factory=list)
    opted_out: bool = False
    version: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def transition(self, state: ConversationState, context: Optional[StateContext] = None) -> None:
        """Move to ``state`` with a fresh context of that state's shape."""
        expected = CONTEXT_TYPES[state]
        if context is None:
            context = expected()
        elif not isinstance(context, expected):
            raise TypeError(f"{state.value} expects {expected.__name__}, got {type(context).__name__}")
        self.state = state
        self.context = context

    def has_processed(self, message_id: Optional[str]) -> bool:
        return bool(message_id) and message_id in self.processed_message_ids

    def record_message(self, message_id: Optional[str], limit: int = 100) -> None:
        if not message_id or message_id in self.processed_message_ids:
            return
        self.processed_message_ids.append(message_id)
        if len(self.processed_message_ids) > limit:
            self.processed_message_ids = self.processed_message_ids[-limit:]

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "phone_number": self.phone,
            "state": self.state.value,
            "context": self.context.model_dump(),
            "is_authorized": self.is_authorized,
            "seller_id": self.seller_id,
            "authorized_at": self.authorized_at.isoformat() if self.authorized_at else None,
            "auth_attempts": self.auth_attempts,
            "last_auth_attempt": self.last_auth_attempt.isoformat() if self.last_auth_attempt else None,
            "processed_message_ids": list(self.processed_message_ids),
            "opted_out": self.opted_out,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_record(cls, rec: Dict[str, Any]) -> "Conversation":
        state_raw = rec.get("state") or ConversationState.NEW.value
        state = (
            ConversationState(state_raw)
            if state_raw in ConversationState._value2member_map_
            else ConversationState.NEW
        )
        context_raw = rec.get("context") or {}
        return cls(
            id=str(rec.get("id")),
            phone=rec.get("phone_number") or "",
            state=state,
            context=parse_context(state, context_raw if isinstance(context_raw, dict) else {}),
            is_authorized=bool(rec.get("is_authorized")),
            seller_id=rec.get("seller_id"),
            authorized_at=parse_timestamp(rec.get("authorized_at")),
            auth_attempts=int(rec.get("auth_attempts") or 0),
            last_auth_attempt=parse_timestamp(rec.get("last_auth_attempt")),
            processed_message_ids=list(rec.get("processed_message_ids") or []),
            opted_out=bool(rec.get("opted_out")),
            version=int(rec.get("version") or 0),
            created_at=parse_timestamp(rec.get("created_at")) or _utcnow(),
            updated_at=parse_timestamp(rec.get("updated_at")) or _utcnow(),
        )
